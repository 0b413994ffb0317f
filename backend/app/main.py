import logging
import sys
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.v1 import auth

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logging.getLogger("app").setLevel(logging.DEBUG)
from app.config import settings
from app.core.errors import AuthErrorCode, DEFAULT_MESSAGES
from app.db.session import init_db
from app.services.google_auth import GoogleCredentialVerifier
from app.services.identity_provider import FirebaseIdentityProvider, IdentityProviderInitError
from prometheus_client import make_asgi_app

logger = logging.getLogger(__name__)
scheduler = AsyncIOScheduler()


async def scheduled_refresh_token_cleanup():
    """Delete expired and revoked refresh tokens (daily)."""
    from app.db.session import async_session_maker
    from app.services.refresh_tokens import cleanup_expired_tokens

    async with async_session_maker() as session:
        removed = await cleanup_expired_tokens(session)
        await session.commit()
    logger.info("Refresh token cleanup removed %s records", removed)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.validate_jwt_config()
    await init_db()

    try:
        app.state.identity_provider = FirebaseIdentityProvider.initialize(settings)
    except IdentityProviderInitError as e:
        if settings.app_env == "production":
            raise RuntimeError(f"Identity provider failed to start: {e}") from e
        logger.warning("Identity provider disabled: %s", e)
        app.state.identity_provider = None

    if settings.google_client_id:
        app.state.credential_verifier = GoogleCredentialVerifier(settings.google_client_id)
    else:
        logger.warning("GOOGLE_CLIENT_ID is not set; Google sign-in is disabled")
        app.state.credential_verifier = None

    hour = settings.refresh_token_cleanup_hour if 0 <= settings.refresh_token_cleanup_hour <= 23 else 3
    scheduler.add_job(scheduled_refresh_token_cleanup, "cron", hour=hour, minute=0)
    scheduler.start()
    yield
    scheduler.shutdown()
    if app.state.identity_provider is not None:
        await app.state.identity_provider.aclose()
    if app.state.credential_verifier is not None:
        app.state.credential_verifier.close()


app = FastAPI(
    title="Auth Backend API",
    description="Email/password and Google sign-in, access/refresh tokens, password reset",
    version="0.1.0",
    lifespan=lifespan,
)
app.add_middleware(GZipMiddleware, minimum_size=500)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        if getattr(settings, "enable_hsts", False):
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    message = DEFAULT_MESSAGES[AuthErrorCode.INTERNAL_ERROR]
    if settings.debug:
        message += f": {type(exc).__name__}: {exc}"
    return JSONResponse(
        status_code=500,
        content={"detail": {"code": AuthErrorCode.INTERNAL_ERROR.value, "message": message}},
    )


_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()] if settings.cors_origins else ["*"]
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth.router, prefix="/api/v1")

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/health")
def health():
    return {"status": "ok"}
