"""
FastAPI server for encrypted archetype clustering.

Endpoints:
- GET  /keys/public - Runtime public key for client-side encryption
- POST /inputs - Register a client ciphertext, get a handle
- POST /transactions - Ingest an encrypted feature vector
- GET  /clusters - List archetypes by public label and category
- POST /clusters - Create an archetype from an encrypted centroid
- POST /clusters/{cluster_id}/decryption - Request a reveal
- POST /oracle/callback - Oracle delivers cleartext + proof
- GET  /decryptions/{request_id} - Reveal status
- GET  /events - Notification log
"""
import base64
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import List, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from umbra.server.compute import ClusteringEngine
from umbra.server.oracle import LocalDecryptionOracle
from umbra.server.runtime import PaillierCoprocessor
from umbra.shared.config import EngineSettings, ServerSettings
from umbra.shared.errors import (
    InvalidCiphertext,
    InvalidReference,
    MalformedCleartext,
    ProofVerificationFailure,
    ClusterLimitReached,
    UmbraError,
    Unauthorized,
)
from umbra.shared.protocol import CipherHandle, CipherType, EncryptedVector
from umbra.shared.utils import parse_ciphertext

logger = logging.getLogger(__name__)


# Pydantic models for API
class HandleModel(BaseModel):
    """Wire form of a ciphertext handle."""
    handle: str
    ctype: str = "EUINT64"

    @classmethod
    def from_handle(cls, h: CipherHandle) -> "HandleModel":
        return cls(handle=h.handle, ctype=h.ctype.name)

    def to_handle(self) -> CipherHandle:
        try:
            return CipherHandle(handle=self.handle, ctype=CipherType[self.ctype])
        except KeyError:
            raise InvalidCiphertext(f"Unknown cipher type {self.ctype}")


class VectorModel(BaseModel):
    """Encrypted feature vector as three handles."""
    amount: HandleModel
    frequency: HandleModel
    counterparty_risk: HandleModel

    def to_vector(self) -> EncryptedVector:
        return EncryptedVector(
            amount=self.amount.to_handle(),
            frequency=self.frequency.to_handle(),
            counterparty_risk=self.counterparty_risk.to_handle(),
        )


class InputRequest(BaseModel):
    """Client ciphertext to register with the runtime."""
    ciphertext: str = Field(..., description="Decimal integer value of a LightPHE Paillier ciphertext")


class ClusterRequest(VectorModel):
    """Request to create an archetype."""
    label: Optional[str] = None
    category: Optional[str] = None


class RevealRequest(BaseModel):
    requester: Optional[str] = None


class CallbackRequest(BaseModel):
    """Oracle callback payload."""
    request_id: int
    cleartext_b64: str
    proof_b64: str


class TransactionResponse(BaseModel):
    transaction_id: int
    created_at: float


class ClusterResponse(BaseModel):
    """Public metadata of an archetype."""
    cluster_id: int
    label: Optional[str] = None
    category: Optional[str] = None


class DecryptionResponse(BaseModel):
    request_id: int
    cluster_id: int
    status: str


class RevealResponse(BaseModel):
    """Decrypted cluster aggregate."""
    request_id: int
    cluster_id: int
    centroid_amount: int
    centroid_frequency: int
    centroid_risk: int
    member_count: int


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    num_transactions: int
    num_clusters: int
    pending_requests: int
    cipher_type: str


# Server state
class ServerState:
    """Server state container."""
    def __init__(self):
        self.settings: ServerSettings = ServerSettings()
        self.runtime: Optional[PaillierCoprocessor] = None
        self.oracle: Optional[LocalDecryptionOracle] = None
        self.engine: Optional[ClusteringEngine] = None


state = ServerState()


def _build_state(
    engine_settings: EngineSettings,
    server_settings: ServerSettings,
    runtime: Optional[PaillierCoprocessor] = None,
) -> None:
    state.settings = server_settings
    state.runtime = runtime or PaillierCoprocessor(
        key_size=engine_settings.key_size, debug=engine_settings.debug_decrypt,
    )
    state.oracle = LocalDecryptionOracle(state.runtime)
    state.engine = ClusteringEngine.with_seeds(
        state.runtime,
        server_settings.seed_centroids,
        settings=engine_settings,
        oracle=state.oracle,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize server on startup."""
    if state.engine is None:
        logger.info("initializing engine from environment")
        _build_state(EngineSettings.from_env(), ServerSettings.from_env())
    logger.info(
        "server ready: %d clusters, %s",
        state.engine.cluster_count, state.engine.cipher_type.name,
    )
    yield
    logger.info("server shutting down")


app = FastAPI(
    title="Project Umbra",
    description="Encrypted behavioral-archetype clustering API",
    version="0.1.0",
    lifespan=lifespan,
)


def _engine() -> ClusteringEngine:
    if state.engine is None:
        raise HTTPException(status_code=500, detail="Server not initialized")
    return state.engine


def _http_error(e: UmbraError) -> HTTPException:
    if isinstance(e, InvalidReference):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ClusterLimitReached):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (Unauthorized, ProofVerificationFailure)):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, MalformedCleartext):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, InvalidCiphertext):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def _deliver_in_background(request_id: int, delay: float) -> None:
    # Plain function: Starlette runs it in the threadpool, off the event loop.
    time.sleep(delay)
    try:
        state.oracle.deliver(request_id)
    except (InvalidReference, ProofVerificationFailure, MalformedCleartext) as e:
        # Request stays pending; the oracle can deliver again.
        logger.warning("background delivery of request %d failed: %s", request_id, e)


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    engine = _engine()
    return HealthResponse(
        status="healthy",
        num_transactions=engine.transaction_count,
        num_clusters=engine.cluster_count,
        pending_requests=len(engine.pending_decryptions()),
        cipher_type=engine.cipher_type.name,
    )


@app.get("/keys/public")
async def public_key():
    """Public key clients encrypt their features with."""
    if state.runtime is None:
        raise HTTPException(status_code=500, detail="Server not initialized")
    return state.runtime.public_key


@app.post("/inputs", response_model=HandleModel)
def register_input(request: InputRequest):
    """Register a client-encrypted value with the runtime."""
    engine = _engine()
    try:
        value = parse_ciphertext(request.ciphertext)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        ciphertext = state.runtime.load_ciphertext(value)
        handle = state.runtime.register_input(ciphertext, engine.cipher_type)
    except UmbraError as e:
        raise _http_error(e)
    return HandleModel.from_handle(handle)


@app.post("/transactions", response_model=TransactionResponse)
def ingest_transaction(request: VectorModel):
    """Ingest an encrypted feature vector."""
    engine = _engine()
    try:
        transaction_id = engine.ingest(request.to_vector())
    except UmbraError as e:
        raise _http_error(e)
    record = engine.get_transaction(transaction_id)
    return TransactionResponse(transaction_id=record.id, created_at=record.created_at)


@app.get("/clusters", response_model=List[ClusterResponse])
def list_clusters(
    search: Optional[str] = None,
    category: Optional[str] = Query(None, alias="type"),
):
    """List archetypes, optionally by label substring and category."""
    return [
        ClusterResponse(cluster_id=c.cluster_id, label=c.label, category=c.category)
        for c in _engine().list_clusters(search=search, category=category)
    ]


@app.post("/clusters", response_model=ClusterResponse)
def create_cluster(request: ClusterRequest):
    """Create a new archetype."""
    engine = _engine()
    try:
        cluster_id = engine.add_cluster(
            request.to_vector(),
            label=request.label,
            category=request.category,
            max_clusters=state.settings.max_clusters,
        )
    except UmbraError as e:
        raise _http_error(e)
    return ClusterResponse(cluster_id=cluster_id, label=request.label, category=request.category)


@app.post("/clusters/{cluster_id}/decryption", response_model=DecryptionResponse)
def request_decryption(
    cluster_id: int,
    background_tasks: BackgroundTasks,
    request: Optional[RevealRequest] = None,
):
    """Request a reveal of one cluster's aggregate."""
    engine = _engine()
    requester = request.requester if request else None
    try:
        request_id = engine.request_decryption(cluster_id, requester=requester)
    except UmbraError as e:
        raise _http_error(e)

    if state.settings.auto_fulfill:
        background_tasks.add_task(
            _deliver_in_background, request_id, state.settings.fulfill_delay_seconds,
        )
    return DecryptionResponse(
        request_id=request_id,
        cluster_id=cluster_id,
        status=engine.decryption_status(request_id).value,
    )


@app.post("/oracle/callback", response_model=RevealResponse)
def oracle_callback(request: CallbackRequest):
    """Oracle delivers a decryption result."""
    engine = _engine()
    try:
        cleartext = base64.b64decode(request.cleartext_b64)
        proof = base64.b64decode(request.proof_b64)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid base64 payload: {e}")

    try:
        reveal = engine.on_decrypted(request.request_id, cleartext, proof)
    except UmbraError as e:
        raise _http_error(e)
    return RevealResponse(**asdict(reveal))


@app.get("/decryptions/{request_id}", response_model=DecryptionResponse)
async def decryption_status(request_id: int):
    """Status of a reveal request."""
    engine = _engine()
    try:
        request = engine.coordinator.get(request_id)
    except UmbraError as e:
        raise _http_error(e)
    return DecryptionResponse(
        request_id=request.request_id,
        cluster_id=request.cluster_id,
        status=request.status.value,
    )


@app.get("/events")
async def list_events(offset: int = 0) -> List[dict]:
    """Notification log from ``offset`` on."""
    return [event.to_dict() for event in _engine().events.since(offset)]


def create_app(
    engine_settings: Optional[EngineSettings] = None,
    server_settings: Optional[ServerSettings] = None,
    runtime: Optional[PaillierCoprocessor] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI app.

    For programmatic use in tests and demos.
    """
    _build_state(engine_settings or EngineSettings(), server_settings or ServerSettings(), runtime)
    return app


def run_server(host: str = "127.0.0.1", port: int = 8000):
    """Run the server directly."""
    import uvicorn
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
