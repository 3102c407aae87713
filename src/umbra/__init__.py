"""
Project Umbra: Encrypted behavioral-archetype clustering.

Financial-behavior feature vectors arrive already encrypted and are
clustered entirely in the ciphertext domain:
1. Distance: squared distance to every archetype centroid
2. Selection: oblivious argmin as a vector of encrypted indicators
3. Update: every centroid is rewritten, gated by its indicator

The engine NEVER sees a transaction's amount, frequency or risk.
Cluster aggregates are revealed only through a proof-checked oracle callback.
"""

__version__ = "0.1.0"
