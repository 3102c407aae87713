"""Shared fixtures: one Paillier runtime per session (key generation is slow)."""
from typing import Callable, Sequence, Tuple

import pytest

from umbra.client.crypto import FeatureEncryptor
from umbra.server.compute import ClusteringEngine
from umbra.server.runtime import PaillierCoprocessor
from umbra.shared.config import EngineSettings
from umbra.shared.protocol import CipherType, ClusterCenter, EncryptedVector

TEST_KEY_SIZE = 1024  # Use smaller key for faster tests
TEST_BITS = 32


@pytest.fixture(scope="session")
def runtime() -> PaillierCoprocessor:
    return PaillierCoprocessor(key_size=TEST_KEY_SIZE, debug=True)


@pytest.fixture(scope="session")
def encryptor(runtime) -> FeatureEncryptor:
    return FeatureEncryptor(public_key=runtime.public_key)


@pytest.fixture
def encrypt(runtime, encryptor) -> Callable[..., EncryptedVector]:
    """Client-encrypt a feature triple and register it with the runtime."""
    def _encrypt(features: Sequence[int], ctype: CipherType = CipherType.EUINT32) -> EncryptedVector:
        ciphertexts = encryptor.encrypt_features(*features)
        return EncryptedVector.from_fields(runtime.register_input(ct, ctype) for ct in ciphertexts)
    return _encrypt


@pytest.fixture
def make_engine(runtime) -> Callable[..., ClusteringEngine]:
    """Engine over 32-bit ciphertexts seeded with public centroids."""
    def _make(seeds: Sequence[Tuple[int, int, int]], **settings) -> ClusteringEngine:
        settings.setdefault("cipher_bits", TEST_BITS)
        return ClusteringEngine.with_seeds(runtime, seeds, settings=EngineSettings(**settings))
    return _make


@pytest.fixture
def decrypt_cluster(runtime) -> Callable[[ClusterCenter], Tuple[int, int, int, int]]:
    """Test-only view of a cluster: (amount, frequency, risk, member_count)."""
    def _decrypt(cluster: ClusterCenter) -> Tuple[int, int, int, int]:
        return tuple(runtime.debug_decrypt(h) for h in cluster.handles())
    return _decrypt
