"""
Decryption oracle: the external party that opens revealed handles.

The engine only submits handles and later receives
``callback(request_id, cleartext, proof)``. LocalDecryptionOracle is an
in-process stand-in that decrypts through the runtime's public-decrypt
gate and signs with a KmsSigner.
"""
import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from umbra.server.runtime import CiphertextRuntime
from umbra.shared.errors import InvalidReference
from umbra.shared.proofs import KmsSigner
from umbra.shared.protocol import CipherHandle
from umbra.shared.utils import encode_words

logger = logging.getLogger(__name__)

DecryptionCallback = Callable[[int, bytes, bytes], Any]


class DecryptionOracle(ABC):
    """Abstract decryption-oracle capability."""

    @abstractmethod
    def bind(self, callback: DecryptionCallback) -> None:
        """Set the function invoked when a decryption is ready."""
        pass

    @abstractmethod
    def submit(self, handles: Sequence[CipherHandle]) -> int:
        """Queue handles for decryption and return the request id."""
        pass

    @property
    @abstractmethod
    def authority_public_key(self) -> bytes:
        """Public key that proofs from this oracle verify against."""
        pass


class LocalDecryptionOracle(DecryptionOracle):
    """
    In-process oracle.

    Requests stay queued until ``deliver`` (or ``deliver_later``) is
    called, which makes delayed, missing and tampered callbacks easy to
    reproduce.
    """

    def __init__(self, runtime: CiphertextRuntime, signer: Optional[KmsSigner] = None):
        """
        Initialize the oracle.

        Args:
            runtime: Runtime to decrypt publicly-decryptable handles with
            signer: Signing authority (a fresh key if omitted)
        """
        self.runtime = runtime
        self.signer = signer or KmsSigner()
        self._callback: Optional[DecryptionCallback] = None
        self._jobs: Dict[int, List[CipherHandle]] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    @property
    def authority_public_key(self) -> bytes:
        return self.signer.public_key_bytes

    @property
    def pending(self) -> List[int]:
        return sorted(self._jobs)

    def bind(self, callback: DecryptionCallback) -> None:
        self._callback = callback

    def submit(self, handles: Sequence[CipherHandle]) -> int:
        with self._lock:
            request_id = self._next_id
            self._next_id += 1
            self._jobs[request_id] = list(handles)
        logger.debug("oracle queued request %d (%d handles)", request_id, len(handles))
        return request_id

    def fulfill(self, request_id: int) -> Tuple[bytes, bytes]:
        """
        Decrypt and sign a queued request without delivering it.

        Returns:
            Tuple of (cleartext, proof)
        """
        handles = self._jobs.get(request_id)
        if handles is None:
            raise InvalidReference(f"Oracle has no pending request {request_id}")
        cleartext = encode_words(self.runtime.public_decrypt(handles))
        return cleartext, self.signer.sign(request_id, cleartext)

    def deliver(self, request_id: int) -> Any:
        """
        Fulfill a request and invoke the bound callback.

        The job is dropped only if the callback succeeds; otherwise it
        stays queued and can be delivered again.
        """
        if self._callback is None:
            raise RuntimeError("Oracle has no callback bound")
        cleartext, proof = self.fulfill(request_id)
        result = self._callback(request_id, cleartext, proof)
        with self._lock:
            self._jobs.pop(request_id, None)
        logger.debug("oracle delivered request %d", request_id)
        return result

    def deliver_all(self) -> List[Any]:
        """Deliver every queued request in id order."""
        return [self.deliver(request_id) for request_id in self.pending]

    async def deliver_later(self, request_id: int, delay: float = 0.0) -> Any:
        """
        Deliver after ``delay`` seconds.

        The delivery itself runs in a worker thread: decryption and the
        engine callback block, and the callback waits on the engine lock.
        """
        await asyncio.sleep(delay)
        return await asyncio.to_thread(self.deliver, request_id)
