"""
Encryption runtime: where ciphertexts live and where opcodes are evaluated.

Supports two implementations:
1. CiphertextRuntime - abstract contract the engine is written against
2. PaillierCoprocessor - local coprocessor backed by LightPHE Paillier

The coprocessor keeps every value as a Paillier ciphertext at rest and
evaluates each opcode inside its own key boundary with exact fixed-width
unsigned semantics. Callers only ever hold CipherHandles.
"""
import logging
import secrets
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from lightphe import LightPHE

from umbra.shared.errors import CiphertextFault, InvalidCiphertext, Unauthorized
from umbra.shared.protocol import CipherHandle, CipherType

logger = logging.getLogger(__name__)


class Opcode(Enum):
    """Homomorphic operations supported by the runtime."""
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"
    LT = "lt"
    EQ = "eq"
    SELECT = "select"
    CAST = "cast"


_ARITHMETIC = (Opcode.ADD, Opcode.SUB, Opcode.MUL, Opcode.DIV)
_COMPARISON = (Opcode.LT, Opcode.EQ)

_DTYPES = {
    CipherType.EBOOL: np.uint8,
    CipherType.EUINT8: np.uint8,
    CipherType.EUINT16: np.uint16,
    CipherType.EUINT32: np.uint32,
    CipherType.EUINT64: np.uint64,
}


class CiphertextRuntime(ABC):
    """Abstract contract for an encrypted-integer runtime."""

    @abstractmethod
    def trivial_encrypt(self, value: int, ctype: CipherType) -> CipherHandle:
        """Encrypt a public constant."""
        pass

    @abstractmethod
    def register_input(self, ciphertext: Any, ctype: CipherType) -> CipherHandle:
        """Accept a client-encrypted value and return its handle."""
        pass

    @abstractmethod
    def evaluate(
        self,
        opcode: Opcode,
        operands: Sequence[CipherHandle],
        result_type: Optional[CipherType] = None,
    ) -> CipherHandle:
        """Apply an opcode to ciphertexts, producing a new handle."""
        pass

    @abstractmethod
    def contains(self, handle: CipherHandle) -> bool:
        pass

    @abstractmethod
    def release(self, handles: Iterable[CipherHandle]) -> None:
        """Drop ciphertexts that are no longer referenced."""
        pass

    @abstractmethod
    def allow_public_decrypt(self, handles: Iterable[CipherHandle]) -> None:
        """Mark handles as decryptable by the oracle."""
        pass

    @abstractmethod
    def public_decrypt(self, handles: Sequence[CipherHandle]) -> List[int]:
        """Decrypt handles previously marked publicly decryptable."""
        pass

    @abstractmethod
    def debug_decrypt(self, handle: CipherHandle) -> int:
        """Decrypt any handle. Test and debugging use only."""
        pass

    @property
    @abstractmethod
    def public_key(self) -> dict:
        pass


class PaillierCoprocessor(CiphertextRuntime):
    """
    Local coprocessor holding the network key.

    Stand-in for a threshold FHE coprocessor: it is the only component
    that can open a ciphertext, and it only hands plaintexts out through
    public_decrypt (for handles the engine released for reveal) or
    debug_decrypt (when explicitly enabled).
    """

    DEFAULT_KEY_SIZE = 2048  # bits

    def __init__(
        self,
        key_size: int = DEFAULT_KEY_SIZE,
        keys: Optional[dict] = None,
        key_file: Optional[str] = None,
        debug: bool = False,
    ):
        """
        Initialize the coprocessor.

        Args:
            key_size: Paillier key size in bits
            keys: Pre-existing key pair dict
            key_file: Path to load keys from
            debug: Enable debug_decrypt
        """
        self.key_size = key_size
        self.debug = debug

        self._cs = LightPHE(
            algorithm_name="Paillier",
            keys=keys,
            key_file=key_file,
            key_size=key_size,
        )
        self._ciphertexts: Dict[str, Tuple[Any, CipherType]] = {}
        self._public: set = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._ciphertexts)

    @property
    def public_key(self) -> dict:
        """Public key for client-side encryption."""
        keys = self._cs.cs.keys.copy()
        return {"public_key": keys.get("public_key", {})}

    def trivial_encrypt(self, value: int, ctype: CipherType) -> CipherHandle:
        if not 0 <= value <= ctype.max_value:
            raise CiphertextFault(f"Constant {value} does not fit {ctype.name}")
        return self._store(value, ctype)

    def load_ciphertext(self, value: int) -> Any:
        """
        Rebuild a client ciphertext from its integer wire value.

        Raises:
            InvalidCiphertext: if the value is outside the ciphertext space (0, n^2)
        """
        n = self._cs.cs.keys["public_key"]["n"]
        if not 0 < value < n * n:
            raise InvalidCiphertext("Ciphertext value outside the key's ciphertext space")
        return self._cs.create_ciphertext_obj(value)

    def register_input(self, ciphertext: Any, ctype: CipherType) -> CipherHandle:
        # Range check stands in for the input proof a real coprocessor verifies.
        try:
            value = self._open(ciphertext)
        except Exception as e:
            raise InvalidCiphertext(f"Unreadable ciphertext: {e}") from e
        if not 0 <= value <= ctype.max_value:
            raise InvalidCiphertext(f"Input does not fit {ctype.name}")

        handle = CipherHandle(handle=secrets.token_hex(32), ctype=ctype)
        with self._lock:
            self._ciphertexts[handle.handle] = (ciphertext, ctype)
        return handle

    def evaluate(
        self,
        opcode: Opcode,
        operands: Sequence[CipherHandle],
        result_type: Optional[CipherType] = None,
    ) -> CipherHandle:
        result_type = self._check_types(opcode, operands, result_type)
        values = [self._plaintext(h) for h in operands]
        return self._store(self._compute(opcode, values, operands, result_type), result_type)

    def contains(self, handle: CipherHandle) -> bool:
        entry = self._ciphertexts.get(handle.handle)
        return entry is not None and entry[1] is handle.ctype

    def release(self, handles: Iterable[CipherHandle]) -> None:
        with self._lock:
            for h in handles:
                if h.handle not in self._public:
                    self._ciphertexts.pop(h.handle, None)

    def allow_public_decrypt(self, handles: Iterable[CipherHandle]) -> None:
        with self._lock:
            for h in handles:
                if h.handle not in self._ciphertexts:
                    raise CiphertextFault(f"Unknown handle {h}")
                self._public.add(h.handle)

    def public_decrypt(self, handles: Sequence[CipherHandle]) -> List[int]:
        for h in handles:
            if h.handle not in self._public:
                raise Unauthorized(f"Handle {h} is not publicly decryptable")
        return [self._plaintext(h) for h in handles]

    def debug_decrypt(self, handle: CipherHandle) -> int:
        if not self.debug:
            raise Unauthorized("debug_decrypt is disabled on this runtime")
        return self._plaintext(handle)

    def _store(self, value: int, ctype: CipherType) -> CipherHandle:
        ciphertext = self._cs.encrypt(int(value))
        handle = CipherHandle(handle=secrets.token_hex(32), ctype=ctype)
        with self._lock:
            self._ciphertexts[handle.handle] = (ciphertext, ctype)
        return handle

    def _open(self, ciphertext: Any) -> int:
        result = self._cs.decrypt(ciphertext)
        # LightPHE returns a list for tensor ciphertexts
        if isinstance(result, list):
            result = result[0]
        return int(result)

    def _plaintext(self, handle: CipherHandle) -> int:
        entry = self._ciphertexts.get(handle.handle)
        if entry is None:
            raise CiphertextFault(f"Unknown handle {handle}")
        return self._open(entry[0])

    def _check_types(
        self,
        opcode: Opcode,
        operands: Sequence[CipherHandle],
        result_type: Optional[CipherType],
    ) -> CipherType:
        types = [h.ctype for h in operands]
        if opcode in _ARITHMETIC or opcode in _COMPARISON:
            if len(types) != 2 or types[0] is not types[1] or types[0] is CipherType.EBOOL:
                raise CiphertextFault(f"{opcode.value} needs two integers of one type, got {types}")
            return types[0] if opcode in _ARITHMETIC else CipherType.EBOOL
        if opcode is Opcode.SELECT:
            if len(types) != 3 or types[0] is not CipherType.EBOOL or types[1] is not types[2]:
                raise CiphertextFault(f"select needs (ebool, T, T), got {types}")
            return types[1]
        if opcode is Opcode.CAST:
            if len(types) != 1 or result_type is None:
                raise CiphertextFault("cast needs one operand and a result type")
            return result_type
        raise CiphertextFault(f"Unsupported opcode {opcode}")

    def _compute(
        self,
        opcode: Opcode,
        values: List[int],
        operands: Sequence[CipherHandle],
        result_type: CipherType,
    ) -> int:
        """Evaluate with the wraparound rules of the operand's fixed-width type."""
        if opcode is Opcode.CAST:
            if result_type is CipherType.EBOOL:
                return int(values[0] != 0)
            return values[0] & result_type.max_value

        if opcode is Opcode.SELECT:
            dtype = _DTYPES[operands[1].ctype]
            cond = np.array([values[0]], dtype=bool)
            out = np.where(cond, np.array([values[1]], dtype=dtype), np.array([values[2]], dtype=dtype))
            return int(out[0])

        dtype = _DTYPES[operands[0].ctype]
        lhs = np.array([values[0]], dtype=dtype)
        rhs = np.array([values[1]], dtype=dtype)

        if opcode is Opcode.ADD:
            out = lhs + rhs
        elif opcode is Opcode.SUB:
            out = lhs - rhs
        elif opcode is Opcode.MUL:
            out = lhs * rhs
        elif opcode is Opcode.DIV:
            # Division by zero saturates to the type's max value.
            safe = np.where(rhs == 0, np.ones_like(rhs), rhs)
            out = np.where(rhs == 0, np.full_like(lhs, np.iinfo(dtype).max), lhs // safe)
        elif opcode is Opcode.LT:
            out = lhs < rhs
        else:
            out = lhs == rhs
        return int(out[0])
