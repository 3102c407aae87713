"""
In-memory ledger state: transactions and cluster centers.

Both stores are owned by the engine; nothing else mutates them.
"""
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence

from umbra.shared.errors import InvalidReference
from umbra.shared.protocol import ClusterCenter, EncryptedVector, TransactionRecord


@dataclass
class TransactionStore:
    """
    Append-only registry of ingested encrypted vectors.

    Ids start at 1 and increase by one per append.
    """
    records: List[TransactionRecord] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.records)

    @property
    def next_id(self) -> int:
        return len(self.records) + 1

    def append(self, vector: EncryptedVector, created_at: float) -> TransactionRecord:
        record = TransactionRecord(id=self.next_id, vector=vector, created_at=created_at)
        self.records.append(record)
        return record

    def get(self, transaction_id: int) -> TransactionRecord:
        if not 1 <= transaction_id <= len(self.records):
            raise InvalidReference(f"Transaction {transaction_id} not found")
        return self.records[transaction_id - 1]

    def __iter__(self) -> Iterator[TransactionRecord]:
        return iter(self.records)


@dataclass
class ClusterRegistry:
    """
    Table of cluster centers keyed by dense id starting at 0.

    Updates replace the full table at once (``commit``), so a partially
    updated registry is never observable.
    """
    clusters: List[ClusterCenter] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.clusters)

    @property
    def next_id(self) -> int:
        return len(self.clusters)

    def append(self, cluster: ClusterCenter) -> ClusterCenter:
        if cluster.cluster_id != self.next_id:
            raise ValueError(f"Expected cluster id {self.next_id}, got {cluster.cluster_id}")
        self.clusters.append(cluster)
        return cluster

    def get(self, cluster_id: int) -> ClusterCenter:
        if not isinstance(cluster_id, int) or not 0 <= cluster_id < len(self.clusters):
            raise InvalidReference(f"Cluster {cluster_id} not found")
        return self.clusters[cluster_id]

    def search(
        self,
        query: Optional[str] = None,
        category: Optional[str] = None,
    ) -> List[ClusterCenter]:
        """
        Filter clusters by their public metadata.

        Args:
            query: Case-insensitive substring of the label
            category: Exact category; None or "all" matches every cluster

        Returns:
            Matching clusters in id order
        """
        needle = (query or "").lower()
        return [
            c for c in self.clusters
            if needle in (c.label or "").lower()
            and (category in (None, "all") or c.category == category)
        ]

    def snapshot(self) -> List[ClusterCenter]:
        return list(self.clusters)

    def commit(self, updated: Sequence[ClusterCenter]) -> None:
        """Replace every cluster state in one step."""
        if [c.cluster_id for c in updated] != list(range(len(self.clusters))):
            raise ValueError("Commit must carry every cluster, in id order")
        self.clusters = list(updated)

    def __iter__(self) -> Iterator[ClusterCenter]:
        return iter(self.clusters)
