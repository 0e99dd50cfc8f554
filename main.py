"""
Continuum API

FastAPI application exposing:
- POST /accounts → 201 (registration)
- POST /sessions, DELETE /sessions/{id} → session lifecycle
- POST /stream/telemetry → 204 (no body)
- GET /sessions/{id}/trust, GET /sessions/{id}/anomalies → trust queries
- POST /sessions/{id}/reauth/{verify,password,cancel} → re-authentication
- POST /biometrics/{user}/enroll, GET /biometrics/{user},
  DELETE /biometrics/{user}/{modality} → enrollment

Windows are closed by a background TickScheduler started in the lifespan
handler (disable with CONTINUUM_AUTO_TICK=false).
"""

from contextlib import asynccontextmanager
import logging
import uuid
from typing import Any, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from core import __version__
from core.config import EngineSettings
from core.models.biometric import (
    BiometricError,
    BiometricService,
    NotEnrolled,
    PlatformUnsupported,
    ReportedPlatformAuthenticator,
)
from core.orchestrator import (
    ContinuumOrchestrator,
    PasswordFallbackUnavailable,
    ReplayAttackError,
    SessionMismatchError,
    UnknownAccountError,
    UnknownSessionError,
)
from core.scheduler import TickScheduler
from core.schemas.inputs import (
    BiometricSamplePayload,
    EnrollPayload,
    Modality,
    PasswordReauthPayload,
    RegisterAccountPayload,
    StartSessionPayload,
    TelemetryStreamPayload,
    VerifyPayload,
)
from core.schemas.outputs import (
    AccountResponse,
    AnomalyLogResponse,
    CancelReauthResponse,
    EnrollmentStatusResponse,
    SessionResponse,
    TrustResponse,
    VerifyResponse,
)
from persistence.audit_logger import AuditLogger
from persistence.enrollment_store import (
    EnrollmentStore,
    EnrollmentStoreError,
    InMemoryEnrollmentStore,
    RedisEnrollmentStore,
)
from persistence.identity_store import (
    Account,
    AccountExistsError,
    IdentityStore,
    InMemoryIdentityStore,
    SupabaseIdentityStore,
    hash_password,
    verify_password,
)
from persistence.session_repository import SessionExistsError, SessionRepository


load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


# =============================================================================
# Application State
# =============================================================================

class AppState:
    """Application state container."""
    settings: Optional[EngineSettings] = None
    orchestrator: Optional[ContinuumOrchestrator] = None
    identity_store: Optional[IdentityStore] = None
    scheduler: Optional[TickScheduler] = None


state = AppState()


def build_enrollment_store(settings: EngineSettings) -> EnrollmentStore:
    if settings.enrollment_backend == "redis":
        return RedisEnrollmentStore()
    return InMemoryEnrollmentStore()


def build_identity_store(settings: EngineSettings) -> IdentityStore:
    if settings.identity_backend == "supabase":
        return SupabaseIdentityStore()
    return InMemoryIdentityStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting Continuum API...")
    settings = EngineSettings.from_env()
    state.settings = settings
    state.identity_store = build_identity_store(settings)
    state.orchestrator = ContinuumOrchestrator(
        repo=SessionRepository(),
        biometrics=BiometricService(build_enrollment_store(settings), settings.biometric),
        identity_store=state.identity_store,
        settings=settings,
        audit_logger=AuditLogger(),
        password_verifier=verify_password,
    )

    if settings.auto_tick:
        state.scheduler = TickScheduler(state.orchestrator, interval=settings.window_seconds)
        state.scheduler.start()
    logger.info("Continuum ready")

    yield

    # Shutdown
    logger.info("Shutting down Continuum API...")
    if state.scheduler is not None:
        await state.scheduler.stop()
        state.scheduler = None


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="Continuum",
    description="Continuous behavioral authentication engine",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Error Mapping
# =============================================================================

def biometric_http_error(e: BiometricError) -> HTTPException:
    if isinstance(e, NotEnrolled):
        code = status.HTTP_409_CONFLICT
    elif isinstance(e, PlatformUnsupported):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(
        status_code=code,
        detail={"category": e.category, "message": e.user_message},
    )


def session_not_found(e: UnknownSessionError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


def sample_for(payload: BiometricSamplePayload) -> Any:
    """Face → descriptor; fingerprint → the client-reported platform result."""
    if payload.modality == Modality.FACE:
        return payload.descriptor
    return ReportedPlatformAuthenticator(
        platform_available=payload.platform_available,
        credential_id=payload.credential_id,
        assertion_valid=payload.assertion_valid,
    )


# =============================================================================
# Health Check
# =============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
        "active_sessions": len(state.orchestrator.active_sessions()),
    }


@app.get("/", include_in_schema=False)
async def root():
    """Redirect root to API documentation."""
    from fastapi.responses import RedirectResponse
    return RedirectResponse(url="/docs")


# =============================================================================
# Accounts
# =============================================================================

@app.post("/accounts", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def register_account(payload: RegisterAccountPayload):
    """Register an account with a bcrypt-hashed password."""
    account = Account(
        id=str(uuid.uuid4()),
        name=payload.name,
        email=payload.email.strip().lower(),
        password_hash=hash_password(payload.password),
        role=payload.role.value,
        department=payload.department.value,
    )
    try:
        state.identity_store.create(account)
    except AccountExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return AccountResponse(
        id=account.id,
        name=account.name,
        email=account.email,
        role=account.role,
        department=account.department,
    )


# =============================================================================
# Session Lifecycle
# =============================================================================

@app.post("/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def start_session(payload: StartSessionPayload):
    """Begin monitoring after successful primary authentication."""
    try:
        session = state.orchestrator.start_session(payload.session_id, payload.user_id)
    except UnknownAccountError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except SessionExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return SessionResponse(
        session_id=session.session_id,
        user_id=session.user_id,
        trust_level=session.trust.trust_level,
        state=session.trust.state,
    )


@app.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def end_session(session_id: str):
    """Logout: destroy all monitoring state for the session."""
    if not state.orchestrator.end_session(session_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session {session_id} is not active",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Stream Endpoint (HTTP 204)
# =============================================================================

@app.post("/stream/telemetry", status_code=status.HTTP_204_NO_CONTENT)
async def stream_telemetry(payload: TelemetryStreamPayload):
    """
    Ingest a batch of key / move / click events.

    - Validates batch_id for anti-replay
    - Folds events into the open window
    - Never returns security decisions
    """
    try:
        state.orchestrator.ingest_batch(payload)
    except UnknownSessionError as e:
        raise session_not_found(e)
    except SessionMismatchError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except ReplayAttackError as e:
        logger.warning(f"Replay rejected: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Trust Queries
# =============================================================================

@app.get("/sessions/{session_id}/trust", response_model=TrustResponse)
async def get_trust(session_id: str):
    """Current trust level and state; idempotent between ticks."""
    try:
        return TrustResponse(
            session_id=session_id,
            trust_level=state.orchestrator.get_trust_level(session_id),
            state=state.orchestrator.get_trust_state(session_id),
            reauth_pending=state.orchestrator.is_reauth_pending(session_id),
        )
    except UnknownSessionError as e:
        raise session_not_found(e)


@app.get("/sessions/{session_id}/anomalies", response_model=AnomalyLogResponse)
async def get_anomalies(session_id: str):
    """Append-only anomaly log for the session."""
    try:
        entries = state.orchestrator.get_anomaly_log(session_id)
    except UnknownSessionError as e:
        raise session_not_found(e)
    return AnomalyLogResponse(session_id=session_id, entries=entries)


# =============================================================================
# Re-authentication
# =============================================================================

def verify_response(session_id: str, verified: bool) -> VerifyResponse:
    return VerifyResponse(
        session_id=session_id,
        verified=verified,
        trust_level=state.orchestrator.get_trust_level(session_id),
        state=state.orchestrator.get_trust_state(session_id),
        reauth_pending=state.orchestrator.is_reauth_pending(session_id),
    )


@app.post("/sessions/{session_id}/reauth/verify", response_model=VerifyResponse)
async def reauth_verify(session_id: str, payload: VerifyPayload):
    """Verify a biometric sample; success clears a pending re-auth."""
    try:
        verified = state.orchestrator.reauthenticate(
            session_id, payload.modality, sample_for(payload)
        )
    except UnknownSessionError as e:
        raise session_not_found(e)
    except BiometricError as e:
        raise biometric_http_error(e)
    except EnrollmentStoreError as e:
        logger.error(f"Enrollment store error during verify: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Enrollment store unavailable",
        )
    return verify_response(session_id, verified)


@app.post("/sessions/{session_id}/reauth/password", response_model=VerifyResponse)
async def reauth_password(session_id: str, payload: PasswordReauthPayload):
    """Password fallback for re-authentication."""
    try:
        verified = state.orchestrator.reauthenticate_with_password(session_id, payload.password)
    except UnknownSessionError as e:
        raise session_not_found(e)
    except PasswordFallbackUnavailable as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    return verify_response(session_id, verified)


@app.post("/sessions/{session_id}/reauth/cancel", response_model=CancelReauthResponse)
async def reauth_cancel(session_id: str):
    """Dismiss the re-auth prompt; outcome depends on the cancel policy."""
    try:
        terminated = state.orchestrator.cancel_reauth(session_id)
        pending = False if terminated else state.orchestrator.is_reauth_pending(session_id)
    except UnknownSessionError as e:
        raise session_not_found(e)

    return CancelReauthResponse(
        session_id=session_id,
        policy=state.settings.trust.cancel_policy,
        session_terminated=terminated,
        reauth_pending=pending,
    )


# =============================================================================
# Biometric Enrollment
# =============================================================================

@app.post("/biometrics/{user_id}/enroll", response_model=EnrollmentStatusResponse)
async def enroll(user_id: str, payload: EnrollPayload):
    """Enroll (or replace) one modality for a user."""
    try:
        state.orchestrator.enroll(
            user_id,
            payload.modality,
            sample_for(payload),
            display_name=payload.display_name,
        )
    except BiometricError as e:
        raise biometric_http_error(e)
    except EnrollmentStoreError as e:
        logger.error(f"Enrollment store error during enroll: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Enrollment store unavailable",
        )
    return EnrollmentStatusResponse.from_status(
        user_id, state.orchestrator.get_enrollment(user_id)
    )


@app.delete("/biometrics/{user_id}/{modality}", response_model=EnrollmentStatusResponse)
async def unenroll(user_id: str, modality: Modality):
    """Remove one enrolled modality for a user."""
    try:
        removed = state.orchestrator.unenroll(user_id, modality)
    except EnrollmentStoreError as e:
        logger.error(f"Enrollment store error during unenroll: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Enrollment store unavailable",
        )
    if not removed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No {modality.value} enrolled for {user_id}",
        )
    return EnrollmentStatusResponse.from_status(
        user_id, state.orchestrator.get_enrollment(user_id)
    )


@app.get("/biometrics/{user_id}", response_model=EnrollmentStatusResponse)
async def get_enrollment(user_id: str):
    """Per-modality enrollment flags."""
    return EnrollmentStatusResponse.from_status(
        user_id, state.orchestrator.get_enrollment(user_id)
    )


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
