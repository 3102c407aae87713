#!/usr/bin/env python3
"""
End-to-end walk-through of encrypted archetype clustering.

Demonstrates the full flow:
1. Runtime key generation and client setup (public key only)
2. Encrypted ingestion with oblivious nearest-archetype assignment
3. Authorized reveal of each archetype's aggregate through the oracle

The revealed aggregates are checked against a plaintext replay of the
same online update.
"""
import sys
import argparse
import functools
import logging
from pathlib import Path
from typing import List, Sequence, Tuple

# Add src to path for development
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from umbra.client.archetypes import ArchetypeClient
from umbra.client.crypto import FeatureEncryptor
from umbra.server.compute import ClusteringEngine
from umbra.server.runtime import PaillierCoprocessor
from umbra.shared.config import EngineSettings
from umbra.shared.utils import generate_feature_vectors, Timer

ARCHETYPES = [
    ("retail", (40, 40, 40)),
    ("gig-economy", (160, 160, 160)),
    ("money-laundering", (260, 260, 260)),
]


def replay_plaintext(
    seeds: Sequence[Tuple[int, int, int]],
    rows: Sequence[Sequence[int]],
) -> List[Tuple[int, int, int, int]]:
    """Plaintext replay of the online update, for verification."""
    centroids = [list(s) for s in seeds]
    counts = [0] * len(seeds)
    for row in rows:
        distances = [sum((x - c) ** 2 for x, c in zip(row, centroid)) for centroid in centroids]
        k = distances.index(min(distances))
        n = counts[k]
        centroids[k] = [(c * n + x) // (n + 1) for c, x in zip(centroids[k], row)]
        counts[k] = n + 1
    return [(*c, n) for c, n in zip(centroids, counts)]


def run_demo(
    num_transactions: int = 30,
    key_size: int = 2048,
    cipher_bits: int = 32,
    seed: int = 42,
    verbose: bool = True,
):
    """
    Run the archetype clustering demonstration.
    """
    print("=" * 70)
    print("Project Umbra - Encrypted Archetype Clustering")
    print("=" * 70)
    print(f"\nConfiguration:")
    print(f"  Transactions:   {num_transactions}")
    print(f"  Archetypes:     {len(ARCHETYPES)}")
    print(f"  Cipher type:    euint{cipher_bits}")
    print(f"  Key size:       {key_size} bits")

    # =========================================================================
    # SETUP PHASE
    # =========================================================================
    print("\n" + "=" * 70)
    print("SETUP PHASE")
    print("=" * 70)

    print(f"\n[1] Generating runtime keys ({key_size}-bit)...")
    with Timer() as t:
        runtime = PaillierCoprocessor(key_size=key_size)
    print(f"    Key generation in {t.elapsed_ms:.0f}ms")

    print("\n[2] Seeding archetypes...")
    settings = EngineSettings(cipher_bits=cipher_bits, key_size=key_size)
    seeds = [centre for _, centre in ARCHETYPES]
    engine = ClusteringEngine.with_seeds(
        runtime, seeds, settings=settings, labels=[name for name, _ in ARCHETYPES],
    )
    for cluster in engine.clusters():
        print(f"    Cluster {cluster.cluster_id}: {cluster.label}")

    print("\n[3] Creating client with the public key only...")
    encryptor = FeatureEncryptor(public_key=runtime.public_key)
    client = ArchetypeClient(
        encryptor,
        functools.partial(runtime.register_input, ctype=engine.cipher_type),
    )
    print(f"    Client holds private key: {encryptor.has_private_key}")

    rows = generate_feature_vectors(num_transactions, num_archetypes=len(ARCHETYPES), seed=seed)

    # =========================================================================
    # INGESTION PHASE
    # =========================================================================
    print("\n" + "=" * 70)
    print("INGESTION PHASE")
    print("=" * 70)

    ingest_times = []
    for row in rows:
        _, timing = client.submit(tuple(int(v) for v in row), engine.ingest, verbose=verbose)
        ingest_times.append(timing["ingest_ms"])
    print(f"\n  Ingested {engine.transaction_count} transactions, "
          f"avg {sum(ingest_times) / len(ingest_times):.1f}ms server time each")

    # =========================================================================
    # REVEAL PHASE
    # =========================================================================
    print("\n" + "=" * 70)
    print("REVEAL PHASE")
    print("=" * 70)

    expected = replay_plaintext(seeds, rows.tolist())
    all_match = True
    print()
    for cluster in engine.clusters():
        reveal, timing = client.reveal(
            cluster.cluster_id,
            engine.request_decryption,
            engine.oracle.deliver,
            engine.events,
        )
        revealed = (
            reveal.centroid_amount,
            reveal.centroid_frequency,
            reveal.centroid_risk,
            reveal.member_count,
        )
        match = revealed == expected[cluster.cluster_id]
        all_match = all_match and match
        print(
            f"  {cluster.label:>16}: centroid=({revealed[0]}, {revealed[1]}, {revealed[2]}) "
            f"members={revealed[3]:3d}  [{'OK' if match else 'MISMATCH'}] "
            f"({timing['reveal_ms']:.1f}ms)"
        )

    # =========================================================================
    # PRIVACY GUARANTEES
    # =========================================================================
    print("\n" + "=" * 70)
    print("PRIVACY GUARANTEES")
    print("=" * 70)
    print("  [x] Server never saw a transaction's features")
    print("  [x] Server never learned which archetype a transaction joined")
    print("  [x] Only explicitly requested aggregates were decrypted")
    print("  [x] Every reveal carried a verified oracle proof")
    print(f"\n  Plaintext replay matches: {'Yes' if all_match else 'No'}")

    return all_match


def main():
    parser = argparse.ArgumentParser(
        description="Demo encrypted archetype clustering for Project Umbra"
    )
    parser.add_argument(
        "--num-transactions", "-n",
        type=int,
        default=30,
        help="Number of transactions to ingest",
    )
    parser.add_argument(
        "--key-size",
        type=int,
        default=2048,
        choices=[1024, 2048],
        help="Paillier key size in bits",
    )
    parser.add_argument(
        "--bits",
        type=int,
        default=32,
        choices=[32, 64],
        help="Width of encrypted integers",
    )
    parser.add_argument(
        "--quick",
        action="store_true",
        help="Quick mode: 1024-bit keys and 10 transactions",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Do not print per-transaction timings",
    )

    args = parser.parse_args()
    logging.basicConfig(level=logging.WARNING)

    if args.quick:
        num_transactions = 10
        key_size = 1024
    else:
        num_transactions = args.num_transactions
        key_size = args.key_size

    ok = run_demo(
        num_transactions=num_transactions,
        key_size=key_size,
        cipher_bits=args.bits,
        verbose=not args.quiet,
    )
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
