"""
Shared utility functions.
"""
import time
from typing import Any, List, Optional, Sequence

import numpy as np

WORD_SIZE = 32  # bytes per encoded cleartext word


def encode_words(values: Sequence[int]) -> bytes:
    """
    Encode unsigned integers as consecutive 32-byte big-endian words.

    Args:
        values: Non-negative integers, each below 2**256

    Returns:
        Concatenated words
    """
    return b"".join(int(v).to_bytes(WORD_SIZE, "big") for v in values)


def decode_words(data: bytes, arity: int) -> List[int]:
    """
    Decode exactly ``arity`` 32-byte big-endian words.

    Raises:
        ValueError: if the payload length does not match the arity
    """
    if not isinstance(data, (bytes, bytearray)):
        raise ValueError(f"Expected bytes, got {type(data).__name__}")
    if len(data) != arity * WORD_SIZE:
        raise ValueError(
            f"Expected {arity * WORD_SIZE} bytes ({arity} words), got {len(data)}"
        )
    return [
        int.from_bytes(data[i:i + WORD_SIZE], "big")
        for i in range(0, len(data), WORD_SIZE)
    ]


def generate_feature_vectors(
    num_vectors: int,
    num_archetypes: int = 3,
    spread: int = 10,
    seed: Optional[int] = None,
) -> np.ndarray:
    """
    Generate synthetic (amount, frequency, risk) integer features.

    Points are drawn around ``num_archetypes`` well-separated centres so
    the clustering has something to find.

    Args:
        num_vectors: Number of vectors to generate
        num_archetypes: Number of underlying behavior groups
        spread: Max absolute jitter around a centre
        seed: Random seed for reproducibility

    Returns:
        Array of shape (num_vectors, 3), dtype int64, all values >= 0
    """
    rng = np.random.default_rng(seed)
    centres = np.arange(num_archetypes).reshape(-1, 1) * 100 + 50
    labels = rng.integers(0, num_archetypes, size=num_vectors)
    jitter = rng.integers(-spread, spread + 1, size=(num_vectors, 3))
    vectors = centres[labels] + jitter
    return np.clip(vectors, 0, None).astype(np.int64)


def serialize_ciphertext(ciphertext: Any) -> str:
    """Wire form of a LightPHE ciphertext: its integer value in decimal."""
    return str(int(ciphertext.value))


def parse_ciphertext(wire: str) -> int:
    """
    Parse the decimal wire form of a ciphertext.

    Raises:
        ValueError: if ``wire`` is not a positive decimal integer
    """
    if not isinstance(wire, str) or not wire.isascii() or not wire.isdigit():
        raise ValueError("Ciphertext must be a decimal integer")
    value = int(wire)
    if value <= 0:
        raise ValueError("Ciphertext must be positive")
    return value


class Timer:
    """Context manager for timing operations."""

    def __init__(self, name: str = "Operation"):
        self.name = name
        self.start_time: Optional[float] = None
        self.elapsed: Optional[float] = None

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args) -> None:
        self.elapsed = time.perf_counter() - self.start_time

    @property
    def elapsed_ms(self) -> float:
        """Get elapsed time in milliseconds."""
        if self.elapsed is None:
            if self.start_time is not None:
                return (time.perf_counter() - self.start_time) * 1000
            return 0.0
        return self.elapsed * 1000
