"""FastAPI application wiring for the account service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis
import uvicorn
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.routes import register_exception_handlers
from .api.routes import router as user_router
from .config import Settings, get_settings
from .domain.credentials import CredentialStore
from .domain.service import AccountService
from .localization import Localizer
from .memory_repository import InMemoryAccountRepository
from .notifications import LoggingEmailSender
from .repository import AccountRepository
from .security.passwords import PasswordHasher
from .security.redis_sessions import RedisSessionManager
from .security.sessions import InMemorySessionManager, SessionManager
from .security.tokens import TokenCodec

settings = get_settings()

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


def _build_session_manager(settings: Settings) -> SessionManager:
    """Instantiate the configured session backend, preferring Redis when available."""
    if settings.session_backend == "redis" and settings.redis_url:
        try:
            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
            logger.info("sessions stored in redis at %s", settings.redis_url)
            return RedisSessionManager(client, ttl_seconds=settings.session_ttl_seconds)
        except redis.exceptions.RedisError as exc:
            logger.warning("redis session store unavailable, falling back to in-memory: %s", exc)

    logger.info("sessions stored in process memory")
    return InMemorySessionManager(ttl_seconds=settings.session_ttl_seconds)


def build_account_service(
    settings: Settings, repository: AccountRepository | InMemoryAccountRepository
) -> AccountService:
    """Assemble the account workflows over ``repository``."""
    return AccountService(
        CredentialStore(repository, PasswordHasher(rounds=settings.bcrypt_rounds)),
        TokenCodec(
            settings.token_secret,
            issuer=settings.token_issuer,
            ttl_seconds=settings.confirmation_token_ttl_seconds,
        ),
        _build_session_manager(settings),
        LoggingEmailSender(settings.public_base_url),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (account store, sessions, services) for the app lifecycle."""
    app.state.localizer = Localizer()
    if settings.store_backend == "memory":
        logger.warning("accounts stored in process memory; data is lost on restart")
        app.state.account_service = build_account_service(settings, InMemoryAccountRepository())
        yield
        return

    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    app.state.pool = pool
    app.state.account_service = build_account_service(settings, AccountRepository(pool))
    try:
        yield
    finally:
        pool.close()
        pool.wait_close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

# CORS for local frontend dev
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)

register_exception_handlers(app)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics", tags=["health"])
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(user_router)


def run() -> None:
    """Serve the application with uvicorn on the configured address."""
    uvicorn.run(app, host=settings.http_host, port=settings.http_port, log_level=settings.log_level.lower())
