"""Tests for the ciphertext runtime and arithmetic adapter."""
import pytest

from umbra.server.arithmetic import CipherOps
from umbra.server.runtime import Opcode
from umbra.shared.errors import CiphertextFault, InvalidCiphertext, Unauthorized
from umbra.shared.protocol import CipherHandle, CipherType
from umbra.shared.utils import parse_ciphertext, serialize_ciphertext


@pytest.fixture
def ops(runtime):
    return CipherOps(runtime, CipherType.EUINT32)


class TestFixedWidthArithmetic:
    """Opcodes follow unsigned fixed-width semantics."""

    def test_sub_wraps(self, runtime, ops):
        """3 - 5 wraps around modulo 2**32."""
        result = ops.sub(ops.constant(3), ops.constant(5))
        assert runtime.debug_decrypt(result) == 2**32 - 2

    def test_mul_wraps(self, runtime, ops):
        result = ops.mul(ops.constant(2**16), ops.constant(2**16))
        assert runtime.debug_decrypt(result) == 0

    def test_square_of_wrapped_difference(self, runtime, ops):
        """(3 - 5)^2 is still 4 after wraparound."""
        diff = ops.sub(ops.constant(3), ops.constant(5))
        assert runtime.debug_decrypt(ops.mul(diff, diff)) == 4

    def test_div_truncates(self, runtime, ops):
        assert runtime.debug_decrypt(ops.div(ops.constant(7), ops.constant(2))) == 3
        assert runtime.debug_decrypt(ops.div(ops.constant(45), ops.constant(3))) == 15

    def test_div_by_zero_saturates(self, runtime, ops):
        result = ops.div(ops.constant(7), ops.zero)
        assert runtime.debug_decrypt(result) == 2**32 - 1

    def test_comparison_and_select(self, runtime, ops):
        a, b = ops.constant(3), ops.constant(5)
        assert runtime.debug_decrypt(ops.lt(a, b)) == 1
        assert runtime.debug_decrypt(ops.lt(b, a)) == 0
        assert runtime.debug_decrypt(ops.lt(a, a)) == 0
        assert runtime.debug_decrypt(ops.eq(a, a)) == 1

        assert runtime.debug_decrypt(ops.select(ops.true, a, b)) == 3
        assert runtime.debug_decrypt(ops.select(ops.false, a, b)) == 5
        assert runtime.debug_decrypt(ops.max(a, b)) == 5

    def test_cast(self, runtime, ops):
        assert runtime.debug_decrypt(ops.cast(ops.true)) == 1
        assert runtime.debug_decrypt(ops.cast(ops.constant(7), CipherType.EBOOL)) == 1
        narrowed = ops.cast(ops.constant(0x1FF), CipherType.EUINT8)
        assert narrowed.ctype is CipherType.EUINT8
        assert runtime.debug_decrypt(narrowed) == 0xFF


class TestRuntimeFaults:
    """Structural faults surface as CiphertextFault and are never hidden."""

    def test_type_mismatch(self, runtime, ops):
        wide = runtime.trivial_encrypt(1, CipherType.EUINT64)
        with pytest.raises(CiphertextFault):
            ops.add(ops.one, wide)

    def test_select_needs_bool(self, ops):
        with pytest.raises(CiphertextFault, match="select"):
            ops.select(ops.one, ops.one, ops.zero)

    def test_unknown_handle(self, runtime, ops):
        ghost = CipherHandle(handle="00" * 32, ctype=CipherType.EUINT32)
        with pytest.raises(CiphertextFault, match="Unknown handle"):
            ops.add(ghost, ops.one)

    def test_constant_out_of_range(self, runtime):
        with pytest.raises(CiphertextFault):
            runtime.trivial_encrypt(2**32, CipherType.EUINT32)

    def test_bool_arithmetic_rejected(self, runtime, ops):
        with pytest.raises(CiphertextFault):
            runtime.evaluate(Opcode.ADD, [ops.true, ops.true])


class TestInputs:
    """Client ciphertexts registered with the runtime."""

    def test_register_input(self, runtime, encryptor):
        handle = runtime.register_input(encryptor.encrypt_value(42), CipherType.EUINT32)
        assert runtime.contains(handle)
        assert runtime.debug_decrypt(handle) == 42

    def test_input_out_of_range(self, runtime, encryptor):
        with pytest.raises(InvalidCiphertext, match="does not fit"):
            runtime.register_input(encryptor.encrypt_value(2**32), CipherType.EUINT32)

    def test_unreadable_input(self, runtime):
        with pytest.raises(InvalidCiphertext):
            runtime.register_input("not a ciphertext", CipherType.EUINT32)

    def test_ciphertext_from_wire_value(self, runtime, encryptor):
        wire = serialize_ciphertext(encryptor.encrypt_value(77))
        ciphertext = runtime.load_ciphertext(parse_ciphertext(wire))
        handle = runtime.register_input(ciphertext, CipherType.EUINT32)
        assert runtime.debug_decrypt(handle) == 77

    @pytest.mark.parametrize("wire", ["", "0", "-3", " 12", "0x1f", "\u0661\u0662"])
    def test_wire_value_must_be_positive_decimal(self, wire):
        with pytest.raises(ValueError):
            parse_ciphertext(wire)

    def test_wire_value_outside_ciphertext_space(self, runtime):
        n = runtime.public_key["public_key"]["n"]
        with pytest.raises(InvalidCiphertext, match="ciphertext space"):
            runtime.load_ciphertext(n * n)

    def test_client_cannot_decrypt(self, encryptor):
        assert not encryptor.has_private_key

    def test_client_rejects_negative(self, encryptor):
        with pytest.raises(ValueError, match="non-negative"):
            encryptor.encrypt_value(-1)


class TestDecryptionGates:
    """Plaintexts leave the runtime only through explicit gates."""

    def test_public_decrypt_requires_allow(self, runtime, ops):
        secret = ops.add(ops.constant(40), ops.constant(2))
        with pytest.raises(Unauthorized):
            runtime.public_decrypt([secret])

        runtime.allow_public_decrypt([secret])
        assert runtime.public_decrypt([secret]) == [42]

    def test_debug_decrypt_disabled(self, runtime, ops):
        runtime.debug = False
        try:
            with pytest.raises(Unauthorized):
                runtime.debug_decrypt(ops.one)
        finally:
            runtime.debug = True


class TestScopes:
    """Intermediates are released when a scope ends."""

    def test_scope_keeps_only_kept(self, runtime, ops):
        a, b = ops.constant(10), ops.constant(20)
        before = len(runtime)
        with ops.scope() as scope:
            total = ops.add(a, b)
            doubled = ops.add(total, total)
            scope.keep([doubled])

        assert len(runtime) == before + 1
        assert runtime.contains(doubled)
        assert not runtime.contains(total)
        assert runtime.debug_decrypt(doubled) == 60

    def test_scope_rolls_back_on_error(self, runtime, ops):
        a = ops.constant(10)
        before = len(runtime)
        with pytest.raises(RuntimeError):
            with ops.scope() as scope:
                kept = ops.add(a, a)
                scope.keep([kept])
                raise RuntimeError("boom")

        assert len(runtime) == before
        assert not runtime.contains(kept)
