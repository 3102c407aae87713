"""Tests for settings loaded from UMBRA_* environment variables."""
import pytest
from pydantic import ValidationError

from umbra.shared.config import EngineSettings, ServerSettings

ENV_NAMES = [
    "CIPHER_BITS", "RENORMALIZE_EVERY", "REVEAL_ALLOWLIST", "KEY_SIZE", "DEBUG_DECRYPT",
    "MAX_CLUSTERS", "AUTO_FULFILL", "FULFILL_DELAY",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv("UMBRA_" + name, raising=False)


class TestEngineSettings:

    def test_defaults_without_env(self):
        settings = EngineSettings.from_env()
        assert settings == EngineSettings()
        assert settings.cipher_bits == 64
        assert settings.reveal_allowlist == []

    def test_reads_env(self, monkeypatch):
        monkeypatch.setenv("UMBRA_CIPHER_BITS", "16")
        monkeypatch.setenv("UMBRA_RENORMALIZE_EVERY", "5")
        monkeypatch.setenv("UMBRA_REVEAL_ALLOWLIST", "auditor, regulator,,")
        monkeypatch.setenv("UMBRA_KEY_SIZE", "1024")
        monkeypatch.setenv("UMBRA_DEBUG_DECRYPT", "TRUE")

        settings = EngineSettings.from_env()

        assert settings.cipher_bits == 16
        assert settings.renormalize_every == 5
        assert settings.reveal_allowlist == ["auditor", "regulator"]
        assert settings.key_size == 1024
        assert settings.debug_decrypt is True

    @pytest.mark.parametrize("raw,expected", [("1", True), ("yes", True), ("0", False), ("off", False)])
    def test_debug_flag_spellings(self, monkeypatch, raw, expected):
        monkeypatch.setenv("UMBRA_DEBUG_DECRYPT", raw)
        assert EngineSettings.from_env().debug_decrypt is expected

    def test_rejects_unsupported_width(self, monkeypatch):
        monkeypatch.setenv("UMBRA_CIPHER_BITS", "128")
        with pytest.raises(ValidationError):
            EngineSettings.from_env()


class TestServerSettings:

    def test_defaults_without_env(self):
        settings = ServerSettings.from_env()
        assert settings.max_clusters == 32
        assert settings.auto_fulfill is True
        assert settings.fulfill_delay_seconds == 0.0

    def test_reads_env(self, monkeypatch):
        monkeypatch.setenv("UMBRA_MAX_CLUSTERS", "4")
        monkeypatch.setenv("UMBRA_AUTO_FULFILL", "no")
        monkeypatch.setenv("UMBRA_FULFILL_DELAY", "0.25")

        settings = ServerSettings.from_env()

        assert settings.max_clusters == 4
        assert settings.auto_fulfill is False
        assert settings.fulfill_delay_seconds == 0.25

    def test_rejects_zero_cap(self, monkeypatch):
        monkeypatch.setenv("UMBRA_MAX_CLUSTERS", "0")
        with pytest.raises(ValidationError):
            ServerSettings.from_env()
