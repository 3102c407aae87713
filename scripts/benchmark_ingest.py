#!/usr/bin/env python3
"""
Benchmark encrypted ingestion cost against the number of clusters.

This script measures:
1. Runtime key generation time
2. Client feature encryption time
3. Ingestion latency (oblivious selection + gated update) for each K
4. Reveal round-trip time

Every ingestion touches every cluster, so latency grows linearly with K.
The numbers here are what ServerSettings.max_clusters should be tuned from.
"""
import sys
import argparse
import functools
from pathlib import Path
from typing import List

import numpy as np

# Add src to path for development
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from umbra.client.archetypes import ArchetypeClient
from umbra.client.crypto import FeatureEncryptor
from umbra.server.compute import ClusteringEngine
from umbra.server.runtime import Opcode, PaillierCoprocessor
from umbra.shared.config import EngineSettings
from umbra.shared.protocol import BenchmarkResult, CipherType
from umbra.shared.utils import generate_feature_vectors, Timer


def benchmark_key_generation(key_size: int = 2048, num_trials: int = 3) -> BenchmarkResult:
    """Benchmark runtime key generation."""
    times = []

    for i in range(num_trials):
        print(f"  Key generation trial {i+1}/{num_trials}...")
        with Timer() as t:
            _ = PaillierCoprocessor(key_size=key_size)
        times.append(t.elapsed)

    avg_time = np.mean(times)
    return BenchmarkResult(
        operation="key_generation",
        num_clusters=0,
        num_operations=num_trials,
        total_time_seconds=sum(times),
        avg_time_per_op_ms=avg_time * 1000,
        throughput_ops_per_sec=1 / avg_time if avg_time > 0 else 0,
        notes=f"key_size={key_size} bits"
    )


def benchmark_encryption(encryptor: FeatureEncryptor, num_trials: int = 20) -> BenchmarkResult:
    """Benchmark client-side encryption of feature triples."""
    rows = generate_feature_vectors(num_trials, seed=7)

    with Timer() as t:
        encryptor.encrypt_batch(rows)

    return BenchmarkResult(
        operation="feature_encryption",
        num_clusters=0,
        num_operations=num_trials,
        total_time_seconds=t.elapsed,
        avg_time_per_op_ms=(t.elapsed / num_trials) * 1000,
        throughput_ops_per_sec=num_trials / t.elapsed if t.elapsed > 0 else 0,
        notes="3 ciphertexts per triple"
    )


def benchmark_ingestion(
    runtime: PaillierCoprocessor,
    client: ArchetypeClient,
    num_clusters: int,
    num_transactions: int = 10,
    cipher_bits: int = 32,
) -> BenchmarkResult:
    """
    Benchmark ingestion into an engine with ``num_clusters`` archetypes.

    Also counts opcodes per ingestion, which must not depend on the data.
    """
    seeds = [(k * 100, k * 100, k * 100) for k in range(num_clusters)]
    engine = ClusteringEngine.with_seeds(
        runtime, seeds, settings=EngineSettings(cipher_bits=cipher_bits),
    )
    rows = generate_feature_vectors(num_transactions, num_archetypes=num_clusters, seed=11)
    vectors = [client.encrypt_vector(tuple(int(v) for v in row)) for row in rows]

    opcode_counts = []
    original = runtime.evaluate

    def counting(opcode: Opcode, operands, result_type=None):
        opcode_counts[-1] += 1
        return original(opcode, operands, result_type)

    runtime.evaluate = counting
    times = []
    try:
        for i, vector in enumerate(vectors):
            opcode_counts.append(0)
            with Timer() as t:
                engine.ingest(vector)
            times.append(t.elapsed)
            print(f"  K={num_clusters} ingestion {i+1}/{num_transactions}: {t.elapsed*1000:.1f}ms")
    finally:
        del runtime.evaluate

    total = sum(times)
    return BenchmarkResult(
        operation="ingestion",
        num_clusters=num_clusters,
        num_operations=num_transactions,
        total_time_seconds=total,
        avg_time_per_op_ms=(total / num_transactions) * 1000,
        throughput_ops_per_sec=num_transactions / total if total > 0 else 0,
        notes=f"opcodes/ingest={sorted(set(opcode_counts))}"
    )


def benchmark_reveal(
    runtime: PaillierCoprocessor,
    client: ArchetypeClient,
    num_reveals: int = 5,
) -> BenchmarkResult:
    """Benchmark the request -> oracle -> verified callback round-trip."""
    engine = ClusteringEngine.with_seeds(
        runtime, [(0, 0, 0), (100, 100, 100)], settings=EngineSettings(cipher_bits=32),
    )
    client.submit((5, 5, 5), engine.ingest)

    times = []
    for _ in range(num_reveals):
        _, timing = client.reveal(0, engine.request_decryption, engine.oracle.deliver, engine.events)
        times.append(timing["reveal_ms"] / 1000)

    total = sum(times)
    return BenchmarkResult(
        operation="reveal_round_trip",
        num_clusters=engine.cluster_count,
        num_operations=num_reveals,
        total_time_seconds=total,
        avg_time_per_op_ms=(total / num_reveals) * 1000,
        throughput_ops_per_sec=num_reveals / total if total > 0 else 0,
    )


def run_full_benchmark(
    cluster_counts: List[int] = [2, 4, 8, 16],
    num_transactions: int = 10,
    key_size: int = 2048,
    budget_ms: float = 1000.0,
) -> List[BenchmarkResult]:
    """Run complete benchmark suite."""
    print("=" * 60)
    print("Project Umbra - Ingestion Benchmark")
    print("=" * 60)

    results = []

    print("\n[1/4] Benchmarking key generation...")
    keygen_result = benchmark_key_generation(key_size=key_size)
    results.append(keygen_result)
    print(keygen_result)

    print("\nCreating runtime and client for benchmarks...")
    runtime = PaillierCoprocessor(key_size=key_size)
    encryptor = FeatureEncryptor(public_key=runtime.public_key)
    client = ArchetypeClient(
        encryptor, functools.partial(runtime.register_input, ctype=CipherType.EUINT32),
    )

    print("\n[2/4] Benchmarking feature encryption...")
    enc_result = benchmark_encryption(encryptor)
    results.append(enc_result)
    print(enc_result)

    for k in cluster_counts:
        print(f"\n{'='*60}")
        print(f"Testing cluster count: {k}")
        print("=" * 60)

        print(f"\n[3/4] Benchmarking ingestion with K={k}...")
        ingest_result = benchmark_ingestion(runtime, client, k, num_transactions)
        results.append(ingest_result)
        print(ingest_result)

    print("\n[4/4] Benchmarking reveal round-trip...")
    reveal_result = benchmark_reveal(runtime, client)
    results.append(reveal_result)
    print(reveal_result)

    # Summary and decision
    print("\n" + "=" * 60)
    print("SUMMARY")
    print("=" * 60)

    ingest_results = [r for r in results if r.operation == "ingestion"]

    print("\nIngestion Latency by Cluster Count:")
    print("-" * 50)
    for r in ingest_results:
        status = "PASS" if r.avg_time_per_op_ms < budget_ms else "OVER_BUDGET"
        print(f"  K={r.num_clusters:3d}: {r.avg_time_per_op_ms:8.1f}ms/ingest [{status}]")

    within = [r.num_clusters for r in ingest_results if r.avg_time_per_op_ms < budget_ms]
    if within:
        print(f"\n*** SUGGESTED max_clusters: {max(within)} (budget {budget_ms:.0f}ms)")
    else:
        print(f"\n*** No tested cluster count fits the {budget_ms:.0f}ms budget")

    return results


def main():
    parser = argparse.ArgumentParser(description="Benchmark encrypted ingestion for Project Umbra")
    parser.add_argument(
        "--clusters",
        type=int,
        nargs="+",
        default=[2, 4, 8, 16],
        help="Cluster counts to test",
    )
    parser.add_argument(
        "--num-transactions",
        type=int,
        default=10,
        help="Transactions ingested per cluster count",
    )
    parser.add_argument(
        "--key-size",
        type=int,
        default=2048,
        choices=[1024, 2048],
        help="Paillier key size in bits",
    )
    parser.add_argument(
        "--budget-ms",
        type=float,
        default=1000.0,
        help="Per-ingestion latency budget",
    )
    parser.add_argument(
        "--quick",
        action="store_true",
        help="Quick mode: 1024-bit keys, K in {2, 4}, 3 transactions",
    )

    args = parser.parse_args()

    if args.quick:
        cluster_counts = [2, 4]
        num_transactions = 3
        key_size = 1024
    else:
        cluster_counts = args.clusters
        num_transactions = args.num_transactions
        key_size = args.key_size

    run_full_benchmark(
        cluster_counts=cluster_counts,
        num_transactions=num_transactions,
        key_size=key_size,
        budget_ms=args.budget_ms,
    )


if __name__ == "__main__":
    main()
