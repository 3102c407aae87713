"""Server-side components for encrypted archetype clustering."""
from umbra.server.runtime import CiphertextRuntime, PaillierCoprocessor, Opcode
from umbra.server.arithmetic import CipherOps
from umbra.server.compute import (
    ClusteringEngine,
    DistanceEvaluator,
    ObliviousSelector,
    CentroidUpdater,
)
from umbra.server.events import EventLog
from umbra.server.oracle import DecryptionOracle, LocalDecryptionOracle
from umbra.server.reveal import RevealCoordinator
from umbra.server.api import app, create_app, run_server

__all__ = [
    "CiphertextRuntime",
    "PaillierCoprocessor",
    "Opcode",
    "CipherOps",
    "ClusteringEngine",
    "DistanceEvaluator",
    "ObliviousSelector",
    "CentroidUpdater",
    "EventLog",
    "DecryptionOracle",
    "LocalDecryptionOracle",
    "RevealCoordinator",
    "app",
    "create_app",
    "run_server",
]
