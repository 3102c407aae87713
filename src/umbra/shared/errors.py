"""
Error taxonomy for engine operations.

Business errors (bad ids, bad proofs, bad cleartexts) abort the operation
with no state change. CiphertextFault is different: it signals a broken
runtime and is never caught by the engine.
"""


class UmbraError(Exception):
    """Base class for all Umbra errors."""


class InvalidReference(UmbraError):
    """A cluster or request id that does not exist (or was already consumed)."""


class ProofVerificationFailure(UmbraError):
    """Oracle proof does not validate for the (request_id, cleartext) pair."""


class MalformedCleartext(UmbraError):
    """Decrypted payload does not have the expected shape."""


class InvalidCiphertext(UmbraError):
    """Structural validation of a ciphertext handle failed."""


class Unauthorized(UmbraError):
    """Caller is not allowed to perform the operation."""


class CiphertextFault(UmbraError):
    """Unrecoverable fault inside the ciphertext arithmetic layer."""


class ClusterLimitReached(UmbraError):
    """Creating another cluster would exceed the configured cap."""
