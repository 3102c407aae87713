"""
Server-side encrypted clustering engine.

The server assigns each transaction to its nearest archetype without seeing:
- The transaction's features (they're encrypted)
- Which archetype it was assigned to (the choice stays encrypted)

Every ingestion costs the same number of opcodes and rewrites every
cluster, whichever one the transaction actually joined.
"""
import logging
import threading
import time
from dataclasses import replace
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple

from umbra.server.arithmetic import CipherOps
from umbra.server.events import ClusterUpdated, EventLog, TransactionProcessed
from umbra.server.oracle import DecryptionOracle, LocalDecryptionOracle
from umbra.server.reveal import RevealCoordinator
from umbra.server.runtime import CiphertextRuntime
from umbra.server.store import ClusterRegistry, TransactionStore
from umbra.shared.config import EngineSettings
from umbra.shared.errors import ClusterLimitReached
from umbra.shared.protocol import (
    CipherHandle,
    CipherType,
    ClusterCenter,
    ClusterReveal,
    EncryptedVector,
    RequestStatus,
    TransactionRecord,
)
from umbra.shared.utils import Timer

logger = logging.getLogger(__name__)


class DistanceEvaluator:
    """Squared Euclidean distance between two encrypted vectors."""

    def __init__(self, ops: CipherOps):
        self.ops = ops

    def distance(self, vector: EncryptedVector, centroid: EncryptedVector) -> CipherHandle:
        """
        Compute sum((v_i - c_i)^2) homomorphically.

        Subtraction wraps modulo 2**bits; squaring the wrapped difference
        gives the true square as long as it fits the type.
        """
        total = None
        for v, c in zip(vector.fields(), centroid.fields()):
            diff = self.ops.sub(v, c)
            square = self.ops.mul(diff, diff)
            total = square if total is None else self.ops.add(total, square)
        return total


class ObliviousSelector:
    """
    Encrypted argmin over the cluster centroids.

    Produces one encrypted boolean per cluster, exactly one of them true.
    The sequence of opcodes depends only on the number of clusters.
    """

    def __init__(self, ops: CipherOps, evaluator: DistanceEvaluator):
        self.ops = ops
        self.evaluator = evaluator

    def select(
        self,
        vector: EncryptedVector,
        centroids: Sequence[EncryptedVector],
    ) -> List[CipherHandle]:
        """
        Compute nearest-cluster indicators.

        Args:
            vector: Encrypted transaction features
            centroids: Cluster centroids in registration order

        Returns:
            Encrypted ebool indicators, one per centroid
        """
        if not centroids:
            raise ValueError("Cannot select among zero clusters")

        # Cluster 0 seeds the running best; later clusters win only if strictly closer.
        best = self.evaluator.distance(vector, centroids[0])
        indicators = [self.ops.true]

        for centroid in centroids[1:]:
            d = self.evaluator.distance(vector, centroid)
            closer = self.ops.lt(d, best)
            best = self.ops.select(closer, d, best)
            indicators = [self.ops.select(closer, self.ops.false, ind) for ind in indicators]
            indicators.append(closer)

        return indicators


class CentroidUpdater:
    """Folds a vector into every cluster, gated by the cluster's indicator."""

    def __init__(self, ops: CipherOps):
        self.ops = ops

    def fold(
        self,
        vector: EncryptedVector,
        cluster: ClusterCenter,
        indicator: CipherHandle,
    ) -> ClusterCenter:
        """
        Apply the gated running-mean update to one cluster.

        Selected: centroid = (centroid * n + x) / (n + 1), count = n + 1.
        Not selected: centroid and count keep their values (new handles).
        """
        ops = self.ops
        count = cluster.member_count
        new_count = ops.add(count, ops.cast(indicator))
        divisor = ops.max(new_count, ops.one)

        fields = []
        for x, c in zip(vector.fields(), cluster.centroid.fields()):
            mean = ops.div(ops.add(ops.mul(c, count), x), divisor)
            fields.append(ops.select(indicator, mean, c))

        sums = cluster.sums
        if sums is not None:
            sums = ops.select_vector(indicator, ops.add_vector(sums, vector), sums)

        return replace(
            cluster,
            centroid=EncryptedVector.from_fields(fields),
            member_count=new_count,
            sums=sums,
        )

    def renormalize(self, cluster: ClusterCenter) -> ClusterCenter:
        """Reset a non-empty cluster's centroid to floor(sums / count)."""
        if cluster.sums is None:
            raise ValueError(f"Cluster {cluster.cluster_id} does not track sums")
        ops = self.ops
        nonempty = ops.lt(ops.zero, cluster.member_count)
        divisor = ops.max(cluster.member_count, ops.one)
        fields = [
            ops.select(nonempty, ops.div(s, divisor), c)
            for s, c in zip(cluster.sums.fields(), cluster.centroid.fields())
        ]
        return replace(cluster, centroid=EncryptedVector.from_fields(fields))


class ClusteringEngine:
    """
    Encrypted online clustering of financial-behavior vectors.

    The mutating operations (ingest, add_cluster, request_decryption,
    on_decrypted) run under one lock, so they apply atomically and in a
    total order.
    """

    def __init__(
        self,
        runtime: CiphertextRuntime,
        initial_centroids: Sequence[EncryptedVector],
        settings: Optional[EngineSettings] = None,
        oracle: Optional[DecryptionOracle] = None,
        events: Optional[EventLog] = None,
        labels: Optional[Sequence[Optional[str]]] = None,
        categories: Optional[Sequence[Optional[str]]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the engine.

        Args:
            runtime: Encryption runtime holding all ciphertexts
            initial_centroids: At least one seed centroid
            settings: Engine settings
            oracle: Decryption oracle (a LocalDecryptionOracle if omitted)
            events: Event log (a fresh one if omitted)
            labels: Optional archetype labels for the initial centroids
            categories: Optional archetype categories for the initial centroids
            clock: Time source for transaction timestamps
        """
        if not initial_centroids:
            raise ValueError("At least one initial cluster is required")

        self.settings = settings or EngineSettings()
        self.clock = clock
        self.ops = CipherOps(runtime, CipherType.for_bits(self.settings.cipher_bits))
        self.evaluator = DistanceEvaluator(self.ops)
        self.selector = ObliviousSelector(self.ops, self.evaluator)
        self.updater = CentroidUpdater(self.ops)

        self.transactions = TransactionStore()
        self.registry = ClusterRegistry()
        self.events = events or EventLog()

        self.oracle = oracle or LocalDecryptionOracle(runtime)
        self.coordinator = RevealCoordinator(
            self.registry,
            self.ops,
            self.oracle,
            self.events,
            allowlist=self.settings.reveal_allowlist,
            clock=clock,
        )
        self.oracle.bind(self.on_decrypted)
        self._lock = threading.RLock()
        # State handles produced by this engine's own opcodes; only these are released.
        self._owned: Set[CipherHandle] = set()

        labels = list(labels) if labels else [None] * len(initial_centroids)
        categories = list(categories) if categories else [None] * len(initial_centroids)
        for centroid, label, category in zip(initial_centroids, labels, categories):
            self.add_cluster(centroid, label=label, category=category)

    @classmethod
    def with_seeds(
        cls,
        runtime: CiphertextRuntime,
        seeds: Sequence[Tuple[int, int, int]],
        settings: Optional[EngineSettings] = None,
        **kwargs,
    ) -> "ClusteringEngine":
        """Create an engine whose initial centroids are public seed values."""
        settings = settings or EngineSettings()
        ops = CipherOps(runtime, CipherType.for_bits(settings.cipher_bits))
        centroids = [ops.trivial_vector(seed) for seed in seeds]
        return cls(runtime, centroids, settings=settings, **kwargs)

    @property
    def transaction_count(self) -> int:
        return len(self.transactions)

    @property
    def cluster_count(self) -> int:
        return len(self.registry)

    @property
    def cipher_type(self) -> CipherType:
        return self.ops.ctype

    def get_cluster(self, cluster_id: int) -> ClusterCenter:
        return self.registry.get(cluster_id)

    def get_transaction(self, transaction_id: int) -> TransactionRecord:
        return self.transactions.get(transaction_id)

    def clusters(self) -> List[ClusterCenter]:
        return self.registry.snapshot()

    def list_clusters(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
    ) -> List[ClusterCenter]:
        """Clusters whose public label contains ``search`` and whose category matches."""
        with self._lock:
            return self.registry.search(search, category)

    def ingest(self, vector: EncryptedVector) -> int:
        """
        Store an encrypted vector and fold it into its nearest cluster.

        Args:
            vector: Encrypted (amount, frequency, counterparty_risk)

        Returns:
            New transaction id
        """
        with self._lock:
            self.ops.validate_vector(vector)
            clusters = self.registry.snapshot()
            sequence = len(self.transactions) + 1

            with self.ops.scope() as scope, Timer() as t:
                indicators = self.selector.select(vector, [c.centroid for c in clusters])
                updated = [
                    self.updater.fold(vector, cluster, indicator)
                    for cluster, indicator in zip(clusters, indicators)
                ]
                if self._renormalize_due(sequence):
                    updated = [self.updater.renormalize(c) for c in updated]
                for cluster in updated:
                    scope.keep(self._state_handles(cluster))

            record = self.transactions.append(vector, self.clock())
            self.registry.commit(updated)
            self._release_superseded(clusters, scope.kept.intersection(scope.created))
            logger.info(
                "ingested transaction %d across %d clusters in %.1fms",
                record.id, len(updated), t.elapsed_ms,
            )
            self.events.emit(TransactionProcessed(
                transaction_id=record.id, timestamp=record.created_at,
            ))
            return record.id

    def add_cluster(
        self,
        initial_centroid: EncryptedVector,
        label: Optional[str] = None,
        category: Optional[str] = None,
        max_clusters: Optional[int] = None,
    ) -> int:
        """
        Append a new, empty cluster seeded at ``initial_centroid``.

        Args:
            initial_centroid: Encrypted seed centroid
            label: Public archetype name
            category: Public archetype category
            max_clusters: Refuse to grow past this many clusters (None = no cap)

        Returns:
            New cluster id
        """
        with self._lock:
            if max_clusters is not None and len(self.registry) >= max_clusters:
                raise ClusterLimitReached(f"Cluster limit of {max_clusters} reached")
            self.ops.validate_vector(initial_centroid)
            sums = self.ops.constant_vector(0) if self.settings.renormalize_every else None
            cluster = self.registry.append(ClusterCenter(
                cluster_id=self.registry.next_id,
                centroid=initial_centroid,
                member_count=self.ops.zero,
                label=label,
                category=category,
                sums=sums,
            ))
            logger.info("created cluster %d (%s)", cluster.cluster_id, label or "unlabelled")
            self.events.emit(ClusterUpdated(cluster_id=cluster.cluster_id))
            return cluster.cluster_id

    def request_decryption(self, cluster_id: int, requester: Optional[str] = None) -> int:
        """Ask the oracle to reveal a cluster's aggregate; returns the request id."""
        with self._lock:
            return self.coordinator.request_decryption(cluster_id, requester).request_id

    def on_decrypted(self, request_id: int, cleartext: bytes, proof: bytes) -> ClusterReveal:
        """Oracle callback entry point."""
        with self._lock:
            return self.coordinator.on_decrypted(request_id, cleartext, proof)

    def decryption_status(self, request_id: int) -> RequestStatus:
        with self._lock:
            return self.coordinator.status(request_id)

    def pending_decryptions(self) -> List[int]:
        with self._lock:
            return self.coordinator.pending()

    def _renormalize_due(self, sequence: int) -> bool:
        every = self.settings.renormalize_every
        return every > 0 and sequence % every == 0

    def _release_superseded(
        self,
        previous: Iterable[ClusterCenter],
        fresh: Iterable[CipherHandle],
    ) -> None:
        """Hand the replaced cluster state back to the runtime."""
        stale = [h for c in previous for h in self._state_handles(c) if h in self._owned]
        self._owned.difference_update(stale)
        self._owned.update(fresh)
        # Handles snapshotted for a reveal are public and survive the release.
        self.ops.release(stale)

    @staticmethod
    def _state_handles(cluster: ClusterCenter) -> List[CipherHandle]:
        handles = cluster.handles()
        if cluster.sums is not None:
            handles.extend(cluster.sums.fields())
        return handles
