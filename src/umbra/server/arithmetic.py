"""
Ciphertext arithmetic adapter.

The engine's only door to the encryption runtime. Every method maps to a
runtime opcode and returns a fresh handle; none of them branch on a value.
"""
import logging
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

from umbra.server.runtime import CiphertextRuntime, Opcode
from umbra.shared.errors import InvalidCiphertext
from umbra.shared.protocol import CipherHandle, CipherType, EncryptedVector

logger = logging.getLogger(__name__)


class CipherScope:
    """Handles created inside an ``ops.scope()`` block."""

    def __init__(self):
        self.created: List[CipherHandle] = []
        self.kept: Set[CipherHandle] = set()

    def keep(self, handles: Sequence[CipherHandle]) -> None:
        """Mark handles as committed state so they survive the scope."""
        self.kept.update(handles)


class CipherOps:
    """
    Homomorphic integer arithmetic over one encrypted integer type.

    Constants are encrypted once and cached. Intermediates created inside
    a scope are released when the scope ends, except the ones kept.
    """

    def __init__(self, runtime: CiphertextRuntime, ctype: CipherType = CipherType.EUINT64):
        """
        Initialize the adapter.

        Args:
            runtime: Encryption runtime holding the ciphertexts
            ctype: Integer type used for features, centroids and counts
        """
        if ctype is CipherType.EBOOL:
            raise ValueError("CipherOps works over an integer type, not ebool")
        self.runtime = runtime
        self.ctype = ctype
        self._constants: Dict[Tuple[int, CipherType], CipherHandle] = {}
        self._scope: Optional[CipherScope] = None

    # Constants

    def constant(self, value: int, ctype: Optional[CipherType] = None) -> CipherHandle:
        ctype = ctype or self.ctype
        key = (value, ctype)
        if key not in self._constants:
            self._constants[key] = self.runtime.trivial_encrypt(value, ctype)
        return self._constants[key]

    @property
    def zero(self) -> CipherHandle:
        return self.constant(0)

    @property
    def one(self) -> CipherHandle:
        return self.constant(1)

    @property
    def max_value(self) -> CipherHandle:
        return self.constant(self.ctype.max_value)

    @property
    def true(self) -> CipherHandle:
        return self.constant(1, CipherType.EBOOL)

    @property
    def false(self) -> CipherHandle:
        return self.constant(0, CipherType.EBOOL)

    # Opcodes

    def add(self, a: CipherHandle, b: CipherHandle) -> CipherHandle:
        return self._eval(Opcode.ADD, a, b)

    def sub(self, a: CipherHandle, b: CipherHandle) -> CipherHandle:
        return self._eval(Opcode.SUB, a, b)

    def mul(self, a: CipherHandle, b: CipherHandle) -> CipherHandle:
        return self._eval(Opcode.MUL, a, b)

    def div(self, a: CipherHandle, b: CipherHandle) -> CipherHandle:
        """Truncating unsigned division; a zero divisor yields the type's max."""
        return self._eval(Opcode.DIV, a, b)

    def lt(self, a: CipherHandle, b: CipherHandle) -> CipherHandle:
        return self._eval(Opcode.LT, a, b)

    def eq(self, a: CipherHandle, b: CipherHandle) -> CipherHandle:
        return self._eval(Opcode.EQ, a, b)

    def select(self, cond: CipherHandle, if_true: CipherHandle, if_false: CipherHandle) -> CipherHandle:
        """Oblivious multiplexer: both branches are already materialized."""
        return self._eval(Opcode.SELECT, cond, if_true, if_false)

    def cast(self, a: CipherHandle, ctype: Optional[CipherType] = None) -> CipherHandle:
        return self._eval(Opcode.CAST, a, result_type=ctype or self.ctype)

    def max(self, a: CipherHandle, b: CipherHandle) -> CipherHandle:
        return self.select(self.lt(a, b), b, a)

    # Vector helpers

    def select_vector(
        self,
        cond: CipherHandle,
        if_true: EncryptedVector,
        if_false: EncryptedVector,
    ) -> EncryptedVector:
        return EncryptedVector.from_fields(
            self.select(cond, t, f) for t, f in zip(if_true.fields(), if_false.fields())
        )

    def add_vector(self, a: EncryptedVector, b: EncryptedVector) -> EncryptedVector:
        return EncryptedVector.from_fields(
            self.add(x, y) for x, y in zip(a.fields(), b.fields())
        )

    def constant_vector(self, value: int) -> EncryptedVector:
        c = self.constant(value)
        return EncryptedVector(amount=c, frequency=c, counterparty_risk=c)

    def trivial_vector(self, values: Sequence[int]) -> EncryptedVector:
        """Fresh (uncached) encryptions of public values, e.g. seed centroids."""
        return EncryptedVector.from_fields(
            self.runtime.trivial_encrypt(int(v), self.ctype) for v in values
        )

    # Runtime plumbing

    def validate(self, handle: CipherHandle) -> None:
        """Structural check for caller-supplied handles."""
        if not isinstance(handle, CipherHandle):
            raise InvalidCiphertext(f"Expected CipherHandle, got {type(handle).__name__}")
        if handle.ctype is not self.ctype:
            raise InvalidCiphertext(f"Expected {self.ctype.name}, got {handle.ctype.name}")
        if not self.runtime.contains(handle):
            raise InvalidCiphertext(f"Unknown ciphertext handle {handle}")

    def validate_vector(self, vector: EncryptedVector) -> None:
        if not isinstance(vector, EncryptedVector):
            raise InvalidCiphertext(f"Expected EncryptedVector, got {type(vector).__name__}")
        for handle in vector.fields():
            self.validate(handle)

    def allow_public_decrypt(self, handles: Sequence[CipherHandle]) -> None:
        self.runtime.allow_public_decrypt(handles)

    def release(self, handles: Sequence[CipherHandle]) -> None:
        """Drop handles that are no longer part of any state."""
        self.runtime.release(handles)

    @contextmanager
    def scope(self) -> Iterator[CipherScope]:
        """
        Track intermediates for one atomic computation.

        On error every handle created in the scope is released; on success
        only the ones not kept are.
        """
        scope = CipherScope()
        previous, self._scope = self._scope, scope
        try:
            yield scope
        except BaseException:
            logger.debug("rolling back %d ciphertexts", len(scope.created))
            self.runtime.release(scope.created)
            raise
        else:
            self.runtime.release([h for h in scope.created if h not in scope.kept])
        finally:
            self._scope = previous

    def _eval(
        self,
        opcode: Opcode,
        *operands: CipherHandle,
        result_type: Optional[CipherType] = None,
    ) -> CipherHandle:
        handle = self.runtime.evaluate(opcode, operands, result_type)
        if self._scope is not None:
            self._scope.created.append(handle)
        return handle
