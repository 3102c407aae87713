"""
Engine and server configuration.
"""
import os
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "UMBRA_"


def _env(name: str) -> Optional[str]:
    return os.environ.get(ENV_PREFIX + name)


class EngineSettings(BaseModel):
    """Settings for the clustering engine and its ciphertext runtime."""

    cipher_bits: int = Field(64, description="Width of encrypted integers (8, 16, 32 or 64)")
    renormalize_every: int = Field(
        0, ge=0, description="Recompute centroids from encrypted sums every N ingestions (0 = off)"
    )
    reveal_allowlist: List[str] = Field(
        default_factory=list, description="Requesters allowed to reveal clusters (empty = anyone)"
    )
    key_size: int = Field(2048, ge=256, description="Paillier key size of the local runtime")
    debug_decrypt: bool = Field(False, description="Allow test-only decryption of any handle")

    @field_validator("cipher_bits")
    @classmethod
    def _check_bits(cls, v: int) -> int:
        if v not in (8, 16, 32, 64):
            raise ValueError("cipher_bits must be one of 8, 16, 32, 64")
        return v

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings from UMBRA_* environment variables."""
        values = {}
        if _env("CIPHER_BITS"):
            values["cipher_bits"] = int(_env("CIPHER_BITS"))
        if _env("RENORMALIZE_EVERY"):
            values["renormalize_every"] = int(_env("RENORMALIZE_EVERY"))
        if _env("REVEAL_ALLOWLIST"):
            values["reveal_allowlist"] = [
                s.strip() for s in _env("REVEAL_ALLOWLIST").split(",") if s.strip()
            ]
        if _env("KEY_SIZE"):
            values["key_size"] = int(_env("KEY_SIZE"))
        if _env("DEBUG_DECRYPT"):
            values["debug_decrypt"] = _env("DEBUG_DECRYPT").lower() in ("1", "true", "yes")
        return cls(**values)


class ServerSettings(BaseModel):
    """Settings for the HTTP surface."""

    max_clusters: Optional[int] = Field(
        32, ge=1, description="Operational cap on clusters; selection cost is O(K) per ingestion"
    )
    auto_fulfill: bool = Field(True, description="Let the local oracle answer requests in the background")
    fulfill_delay_seconds: float = Field(0.0, ge=0.0)
    seed_centroids: List[Tuple[int, int, int]] = Field(
        default_factory=lambda: [(0, 0, 0), (100, 100, 100)]
    )

    @classmethod
    def from_env(cls) -> "ServerSettings":
        """Build settings from UMBRA_* environment variables."""
        values = {}
        if _env("MAX_CLUSTERS"):
            values["max_clusters"] = int(_env("MAX_CLUSTERS"))
        if _env("AUTO_FULFILL"):
            values["auto_fulfill"] = _env("AUTO_FULFILL").lower() in ("1", "true", "yes")
        if _env("FULFILL_DELAY"):
            values["fulfill_delay_seconds"] = float(_env("FULFILL_DELAY"))
        return cls(**values)
