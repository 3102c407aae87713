"""
Client-side orchestration.

Coordinates the client's side of the flow:
1. Encrypt features with the public key
2. Register ciphertexts with the runtime (get handles)
3. Submit transactions / seed archetypes
4. Request a reveal and collect the decrypted aggregate
"""
import logging
from typing import Any, Callable, Optional, Sequence, Tuple

from umbra.client.crypto import FeatureEncryptor
from umbra.server.events import ClusterDecrypted, EventLog
from umbra.shared.protocol import CipherHandle, ClusterReveal, EncryptedVector
from umbra.shared.utils import Timer

logger = logging.getLogger(__name__)


class ArchetypeClient:
    """
    Client-side coordinator for submissions and reveals.

    Server interaction goes through plain callables so the same client
    works in-process and behind an HTTP transport.
    """

    def __init__(
        self,
        encryptor: FeatureEncryptor,
        register_fn: Callable[[Any], CipherHandle],
    ):
        """
        Initialize the client.

        Args:
            encryptor: Public-key feature encryptor
            register_fn: Turns a client ciphertext into a runtime handle
        """
        self.encryptor = encryptor
        self.register_fn = register_fn

    def encrypt_vector(self, features: Sequence[int]) -> EncryptedVector:
        """Encrypt and register a feature triple."""
        ciphertexts = self.encryptor.encrypt_features(*features)
        return EncryptedVector.from_fields(self.register_fn(ct) for ct in ciphertexts)

    def submit(
        self,
        features: Sequence[int],
        ingest_fn: Callable[[EncryptedVector], int],
        verbose: bool = False,
    ) -> Tuple[int, dict]:
        """
        Encrypt and ingest one transaction.

        Args:
            features: (amount, frequency, counterparty_risk)
            ingest_fn: Server ingestion call, returns the transaction id
            verbose: Print timing information

        Returns:
            Tuple of (transaction id, timing info)
        """
        timing = {}

        with Timer() as t:
            vector = self.encrypt_vector(features)
        timing["encrypt_ms"] = t.elapsed_ms

        with Timer() as t:
            transaction_id = ingest_fn(vector)
        timing["ingest_ms"] = t.elapsed_ms
        timing["total_ms"] = timing["encrypt_ms"] + timing["ingest_ms"]

        if verbose:
            print(
                f"  Transaction {transaction_id}: encrypt {timing['encrypt_ms']:.1f}ms, "
                f"ingest {timing['ingest_ms']:.1f}ms"
            )
        return transaction_id, timing

    def seed_archetype(
        self,
        features: Sequence[int],
        add_cluster_fn: Callable[..., int],
        label: Optional[str] = None,
        category: Optional[str] = None,
    ) -> int:
        """Create a new archetype seeded at an encrypted centroid."""
        return add_cluster_fn(self.encrypt_vector(features), label=label, category=category)

    def reveal(
        self,
        cluster_id: int,
        request_fn: Callable[[int], int],
        deliver_fn: Callable[[int], Any],
        events: EventLog,
        verbose: bool = False,
    ) -> Tuple[ClusterReveal, dict]:
        """
        Run a full reveal round-trip for one cluster.

        Args:
            cluster_id: Cluster to reveal
            request_fn: Server decryption-request call, returns the request id
            deliver_fn: Makes the oracle answer the given request id
            events: Event log the decrypted aggregate is published on

        Returns:
            Tuple of (reveal, timing info)
        """
        timing = {}
        offset = len(events)

        with Timer() as t:
            request_id = request_fn(cluster_id)
            deliver_fn(request_id)
        timing["reveal_ms"] = t.elapsed_ms

        for event in events.since(offset, ClusterDecrypted):
            if event.request_id == request_id:
                reveal = ClusterReveal(
                    request_id=event.request_id,
                    cluster_id=event.cluster_id,
                    centroid_amount=event.centroid_amount,
                    centroid_frequency=event.centroid_frequency,
                    centroid_risk=event.centroid_risk,
                    member_count=event.member_count,
                )
                if verbose:
                    print(f"  Cluster {cluster_id} revealed in {timing['reveal_ms']:.1f}ms")
                return reveal, timing

        logger.warning("request %d produced no decrypted aggregate", request_id)
        raise RuntimeError(f"No decrypted aggregate published for request {request_id}")
