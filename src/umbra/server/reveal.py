"""
Reveal coordinator: request -> oracle callback -> proof check -> event.

Each request is an explicit record keyed by request id and moves
PENDING -> FULFILLED exactly once. Failed callbacks leave it PENDING.
Plaintexts are handed to the caller and published on the event log,
never written back into engine state.
"""
import logging
import time
from typing import Callable, Dict, List, Optional, Sequence

from umbra.server.arithmetic import CipherOps
from umbra.server.events import ClusterDecrypted, DecryptionRequested, EventLog
from umbra.server.oracle import DecryptionOracle
from umbra.server.store import ClusterRegistry
from umbra.shared.errors import (
    InvalidReference,
    MalformedCleartext,
    ProofVerificationFailure,
    Unauthorized,
)
from umbra.shared.proofs import ProofVerifier
from umbra.shared.protocol import ClusterReveal, DecryptionRequest, RequestStatus
from umbra.shared.utils import decode_words

logger = logging.getLogger(__name__)

CLEARTEXT_ARITY = 4  # amount, frequency, risk, member count


class RevealCoordinator:
    """Manages authorized decryption of cluster aggregates."""

    def __init__(
        self,
        registry: ClusterRegistry,
        ops: CipherOps,
        oracle: DecryptionOracle,
        events: EventLog,
        verifier: Optional[ProofVerifier] = None,
        allowlist: Sequence[str] = (),
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the coordinator.

        Args:
            registry: Cluster registry to snapshot from
            ops: Ciphertext adapter (marks handles publicly decryptable)
            oracle: Decryption oracle capability
            events: Event log for notifications
            verifier: Proof verifier (defaults to the oracle's authority key)
            allowlist: Requesters allowed to reveal; empty means anyone
            clock: Time source for request timestamps
        """
        self.registry = registry
        self.ops = ops
        self.oracle = oracle
        self.events = events
        self.verifier = verifier or ProofVerifier(oracle.authority_public_key)
        self.allowlist = frozenset(allowlist)
        self.clock = clock
        self._requests: Dict[int, DecryptionRequest] = {}

    def __len__(self) -> int:
        return len(self._requests)

    def request_decryption(
        self,
        cluster_id: int,
        requester: Optional[str] = None,
    ) -> DecryptionRequest:
        """
        Snapshot a cluster and submit it to the oracle.

        Args:
            cluster_id: Cluster to reveal
            requester: Identity checked against the allowlist

        Returns:
            The new PENDING request
        """
        if self.allowlist and requester not in self.allowlist:
            raise Unauthorized(f"Requester {requester!r} may not reveal clusters")

        cluster = self.registry.get(cluster_id)
        handles = cluster.handles()
        request_id = self.oracle.submit(handles)
        if request_id in self._requests:
            # Nothing was marked decryptable yet, so the stray job cannot be fulfilled.
            raise InvalidReference(f"Oracle reissued request id {request_id}")
        self.ops.allow_public_decrypt(handles)

        request = DecryptionRequest(
            request_id=request_id,
            cluster_id=cluster_id,
            requested_at=self.clock(),
            handles=handles,
            requester=requester,
        )
        self._requests[request_id] = request
        self.events.emit(DecryptionRequested(request_id=request_id, cluster_id=cluster_id))
        logger.info("decryption request %d for cluster %d", request_id, cluster_id)
        return request

    def on_decrypted(self, request_id: int, cleartext: bytes, proof: bytes) -> ClusterReveal:
        """
        Accept an oracle callback.

        Raises:
            InvalidReference: unknown or already fulfilled request
            ProofVerificationFailure: proof does not match (request_id, cleartext)
            MalformedCleartext: payload is not four 32-byte words
        """
        request = self._requests.get(request_id)
        if request is None:
            raise InvalidReference(f"Unknown decryption request {request_id}")
        if request.status is RequestStatus.FULFILLED:
            raise InvalidReference(f"Decryption request {request_id} already fulfilled")

        try:
            self.verifier.verify(request_id, cleartext, proof)
        except ProofVerificationFailure:
            logger.warning("rejected proof for decryption request %d", request_id)
            raise

        try:
            amount, frequency, risk, count = decode_words(cleartext, CLEARTEXT_ARITY)
        except ValueError as e:
            logger.warning("malformed cleartext for decryption request %d: %s", request_id, e)
            raise MalformedCleartext(str(e)) from e

        request.status = RequestStatus.FULFILLED
        reveal = ClusterReveal(
            request_id=request_id,
            cluster_id=request.cluster_id,
            centroid_amount=amount,
            centroid_frequency=frequency,
            centroid_risk=risk,
            member_count=count,
        )
        self.events.emit(ClusterDecrypted(
            request_id=request_id,
            cluster_id=request.cluster_id,
            centroid_amount=amount,
            centroid_frequency=frequency,
            centroid_risk=risk,
            member_count=count,
        ))
        logger.info("decryption request %d fulfilled", request_id)
        return reveal

    def get(self, request_id: int) -> DecryptionRequest:
        request = self._requests.get(request_id)
        if request is None:
            raise InvalidReference(f"Unknown decryption request {request_id}")
        return request

    def status(self, request_id: int) -> RequestStatus:
        return self.get(request_id).status

    def pending(self) -> List[int]:
        return sorted(
            rid for rid, r in self._requests.items() if r.status is RequestStatus.PENDING
        )
