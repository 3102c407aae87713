"""Client-side components for encrypted archetype clustering."""
from umbra.client.crypto import FeatureEncryptor
from umbra.client.archetypes import ArchetypeClient

__all__ = ["FeatureEncryptor", "ArchetypeClient"]
