"""
Data model shared by the engine, the HTTP layer and the client.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from enum import Enum


class CipherType(Enum):
    """Encrypted integer types understood by the runtime (value = bit width)."""
    EBOOL = 1
    EUINT8 = 8
    EUINT16 = 16
    EUINT32 = 32
    EUINT64 = 64

    @property
    def bits(self) -> int:
        return self.value

    @property
    def max_value(self) -> int:
        return (1 << self.value) - 1

    @classmethod
    def for_bits(cls, bits: int) -> "CipherType":
        """Unsigned integer type of the given width."""
        for ctype in cls:
            if ctype is not cls.EBOOL and ctype.bits == bits:
                return ctype
        raise ValueError(f"No encrypted integer type with {bits} bits")


@dataclass(frozen=True)
class CipherHandle:
    """
    Opaque reference to a ciphertext held by the runtime.

    Carries no information about the encrypted value. Every homomorphic
    operation produces a fresh handle; existing handles never change.
    """
    handle: str
    ctype: CipherType

    def __str__(self) -> str:
        return f"{self.ctype.name.lower()}:{self.handle[:12]}"


@dataclass(frozen=True)
class EncryptedVector:
    """Financial-behavior feature vector, one ciphertext per dimension."""
    amount: CipherHandle
    frequency: CipherHandle
    counterparty_risk: CipherHandle

    def fields(self) -> Tuple[CipherHandle, CipherHandle, CipherHandle]:
        return (self.amount, self.frequency, self.counterparty_risk)

    @classmethod
    def from_fields(cls, fields) -> "EncryptedVector":
        amount, frequency, counterparty_risk = fields
        return cls(amount=amount, frequency=frequency, counterparty_risk=counterparty_risk)


@dataclass(frozen=True)
class TransactionRecord:
    """Ingested transaction. Created once, never mutated."""
    id: int
    vector: EncryptedVector
    created_at: float


@dataclass(frozen=True)
class ClusterCenter:
    """
    State of one behavioral archetype.

    Replaced wholesale on every ingestion (all clusters, selected or not),
    so the sequence of writes never depends on the assignment.
    """
    cluster_id: int
    centroid: EncryptedVector
    member_count: CipherHandle
    label: Optional[str] = None
    category: Optional[str] = None
    sums: Optional[EncryptedVector] = None  # only with re-normalization enabled

    def handles(self) -> List[CipherHandle]:
        """Centroid fields followed by member count (reveal order)."""
        return [*self.centroid.fields(), self.member_count]


class RequestStatus(Enum):
    """Lifecycle of a decryption request."""
    PENDING = "pending"
    FULFILLED = "fulfilled"


@dataclass
class DecryptionRequest:
    """Reveal request awaiting (or having received) its oracle callback."""
    request_id: int
    cluster_id: int
    requested_at: float
    handles: List[CipherHandle] = field(default_factory=list)
    status: RequestStatus = RequestStatus.PENDING
    requester: Optional[str] = None


@dataclass(frozen=True)
class ClusterReveal:
    """Plaintext aggregate delivered by a successful callback."""
    request_id: int
    cluster_id: int
    centroid_amount: int
    centroid_frequency: int
    centroid_risk: int
    member_count: int


@dataclass
class BenchmarkResult:
    """Results from a benchmark run."""
    operation: str
    num_clusters: int
    num_operations: int
    total_time_seconds: float
    avg_time_per_op_ms: float
    throughput_ops_per_sec: float
    notes: str = ""

    def __str__(self) -> str:
        return (
            f"Benchmark: {self.operation}\n"
            f"  Clusters: {self.num_clusters}\n"
            f"  Operations: {self.num_operations}\n"
            f"  Total time: {self.total_time_seconds:.3f}s\n"
            f"  Avg per op: {self.avg_time_per_op_ms:.3f}ms\n"
            f"  Throughput: {self.throughput_ops_per_sec:.2f} ops/s\n"
            f"  Notes: {self.notes}"
        )
