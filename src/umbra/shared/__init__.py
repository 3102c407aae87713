"""Shared utilities and protocol definitions."""
from umbra.shared.protocol import (
    BenchmarkResult,
    CipherHandle,
    CipherType,
    ClusterCenter,
    ClusterReveal,
    DecryptionRequest,
    EncryptedVector,
    RequestStatus,
    TransactionRecord,
)
from umbra.shared.errors import (
    UmbraError,
    InvalidReference,
    ProofVerificationFailure,
    MalformedCleartext,
    InvalidCiphertext,
    Unauthorized,
    CiphertextFault,
    ClusterLimitReached,
)
from umbra.shared.config import EngineSettings, ServerSettings
from umbra.shared.utils import (
    encode_words,
    decode_words,
    generate_feature_vectors,
    parse_ciphertext,
    serialize_ciphertext,
    Timer,
)

__all__ = [
    "BenchmarkResult",
    "CipherHandle",
    "CipherType",
    "ClusterCenter",
    "ClusterReveal",
    "DecryptionRequest",
    "EncryptedVector",
    "RequestStatus",
    "TransactionRecord",
    "UmbraError",
    "InvalidReference",
    "ProofVerificationFailure",
    "MalformedCleartext",
    "InvalidCiphertext",
    "Unauthorized",
    "CiphertextFault",
    "ClusterLimitReached",
    "EngineSettings",
    "ServerSettings",
    "encode_words",
    "decode_words",
    "generate_feature_vectors",
    "parse_ciphertext",
    "serialize_ciphertext",
    "Timer",
]
