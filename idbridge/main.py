# idbridge/main.py
"""
IdentityBridge FastAPI application.

Every request passes through the security pipeline (header policy,
cookie session, CSRF, field validation) before one of the routes below
runs. The routes themselves are thin: sign-in and provisioning are
delegated to an IdentityBackend.

Run with:
    uvicorn idbridge.main:create_app --factory
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Mapping, Optional, Tuple
import logging
import os
import time

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

from idbridge.core.config import Settings, load_settings, validate_required_settings
from idbridge.core.exceptions import BackendUnavailableError, get_safe_error_message
from idbridge.core.logging_config import setup_logging
from idbridge.core.rate_limit_config import RATE_LIMIT_MESSAGE, RATE_LIMITS, get_real_ip
from idbridge.core.security import CookieCodec, CsrfGuard, SecurityHeaderPolicy, SessionStore
from idbridge.middleware.security_pipeline import (
    CsrfStage,
    FieldExtractionStage,
    HeaderPolicyStage,
    RequestContext,
    SecurityPipelineMiddleware,
    SessionStage,
    ValidationStage,
    get_request_context,
)
from idbridge.services.identity_service import IdentityBackend, UnconfiguredBackend
from idbridge.services.validation_service import RuleSet, ValidationService

logger = logging.getLogger(__name__)

VERSION = "1.0.0"
POLICY_DOCUMENT_ROUTE = "/.well-known/security.txt"
POLICY_DOCUMENT_MEDIA_TYPE = "text/plain; charset=utf8"

# Requests to these paths never load or issue a session
SESSIONLESS_PATHS = frozenset({"/health", "/healthz", POLICY_DOCUMENT_ROUTE})

# =============================================================================
# RATE LIMITING
# =============================================================================

# Create limiter instance with custom IP extraction
limiter = Limiter(key_func=get_real_ip)


def custom_rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Custom rate limit response with helpful message"""
    response = PlainTextResponse(content=RATE_LIMIT_MESSAGE, status_code=429)
    response.headers["Retry-After"] = "60"
    response.headers["X-RateLimit-Limit"] = str(getattr(exc, "limit", "N/A"))
    return response


async def backend_unavailable_handler(request: Request, exc: BackendUnavailableError):
    logger.error(f"❌ Backend unavailable on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": get_safe_error_message(exc)})


# =============================================================================
# ROUTES
# =============================================================================

router = APIRouter()


def get_identity_backend(request: Request) -> IdentityBackend:
    return request.app.state.identity_backend


@router.get("/health", status_code=200)
def health():
    """Health check endpoint"""
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


@router.get("/healthz", response_class=PlainTextResponse, status_code=200)
def healthz():
    """Plain text health check for load balancers"""
    return "OK"


@router.get(POLICY_DOCUMENT_ROUTE)
def policy_document(request: Request):
    """Static policy document, served verbatim from disk"""
    path = request.app.state.settings.POLICY_DOCUMENT_PATH
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Not Found")
    return FileResponse(path, media_type=POLICY_DOCUMENT_MEDIA_TYPE)


@router.get("/")
def welcome(ctx: RequestContext = Depends(get_request_context)):
    """Landing document; carries the CSRF token for the session"""
    return {
        "service": "identity-bridge",
        "version": VERSION,
        "signed_in": "email" in ctx.session,
        "csrf_token": ctx.issue_csrf_token(),
    }


@router.get("/api/session_context")
def session_context(ctx: RequestContext = Depends(get_request_context)):
    """Session state for the client-side code, plus a CSRF token for its next POST"""
    return {
        "email": ctx.session.get("email"),
        "csrf_token": ctx.issue_csrf_token(),
    }


@router.post("/api/sign_in")
@limiter.limit(RATE_LIMITS["sign_in"])
async def sign_in(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    backend: IdentityBackend = Depends(get_identity_backend)
):
    """Check credentials with the backend and remember the user in the session"""
    email = ctx.fields["email"]
    if not await backend.authenticate(email, ctx.fields["password"]):
        logger.info("🔒 Sign-in refused")
        raise HTTPException(status_code=401, detail="Invalid email or password")

    ctx.session["email"] = email
    logger.info("✅ Sign-in succeeded")
    return {"success": True}


@router.post("/api/provision")
@limiter.limit(RATE_LIMITS["provision"])
async def provision(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    backend: IdentityBackend = Depends(get_identity_backend)
):
    """Have the backend certify the client's public key for the signed-in email"""
    email = ctx.session.get("email")
    if not email:
        raise HTTPException(status_code=401, detail="Not signed in")

    cert = await backend.certify(email, ctx.fields["pubkey"], int(ctx.fields["duration"]))
    return {"cert": cert}


@router.post("/api/sign_out")
async def sign_out(ctx: RequestContext = Depends(get_request_context)):
    """Forget the signed-in user. The session and its CSRF secret stay."""
    ctx.session.clear()
    return {"success": True}


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan event handler for startup/shutdown"""
    settings: Settings = app.state.settings
    logger.info("=" * 60)
    logger.info(f"🚀 {settings.APP_NAME} starting...")
    logger.info(f"  - Security mode: {settings.SECURITY_MODE.value}")
    logger.info(f"  - Session cookie: {settings.SESSION_COOKIE_NAME} ({settings.SESSION_DURATION_SECONDS}s rolling)")
    logger.info(f"  - Identity backend: {app.state.identity_backend.name}")
    logger.info("=" * 60)

    yield

    logger.info(f"🛑 {settings.APP_NAME} shutting down")


async def log_requests(request: Request, call_next):
    """Log all incoming requests"""
    if request.url.path not in ("/health", "/healthz"):
        logger.info(f"📥 Request: {request.method} {request.url.path}")
    return await call_next(request)


def create_app(
    settings: Optional[Settings] = None,
    backend: Optional[IdentityBackend] = None,
    route_rules: Optional[Mapping[Tuple[str, str], RuleSet]] = None,
    clock: Callable[[], float] = time.time
) -> FastAPI:
    """
    Build the application.

    Raises:
        ConfigurationError: Missing or invalid key material. The process
            must not start serving in that case.
    """
    settings = settings if settings is not None else load_settings()
    setup_logging(settings)
    settings = validate_required_settings(settings)

    # Security components, built once from the immutable settings
    policy = SecurityHeaderPolicy.from_settings(settings)
    codec = CookieCodec.from_secret(settings.SESSION_SECRET.get_secret_value(), clock=clock)
    store = SessionStore.from_settings(settings, codec, policy, clock=clock)

    stages = [
        HeaderPolicyStage(policy),
        SessionStage(store, sessionless_paths=SESSIONLESS_PATHS),
        FieldExtractionStage(),
        CsrfStage(CsrfGuard()),
        ValidationStage(ValidationService(route_rules)),
    ]

    app = FastAPI(
        title=settings.APP_NAME,
        version=VERSION,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None
    )
    app.state.settings = settings
    app.state.identity_backend = backend or UnconfiguredBackend()
    # Required by slowapi
    app.state.limiter = limiter

    app.add_exception_handler(RateLimitExceeded, custom_rate_limit_handler)
    app.add_exception_handler(BackendUnavailableError, backend_unavailable_handler)

    app.add_middleware(SecurityPipelineMiddleware, stages=stages)
    app.middleware("http")(log_requests)

    app.include_router(router)

    policy.warn_if_insecure()
    return app


# Main entry point
if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    logger.info(f"🚀 Starting server on port {port}...")

    uvicorn.run(
        "idbridge.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=port,
        log_level="info"
    )
