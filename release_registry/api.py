"""
FastAPI application for the Release Registry.
"""

from __future__ import annotations

import importlib.metadata
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Dict

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from .config import Settings, get_settings
from .core.errors import RegistryError
from .core.notifier import SubscriberNotifier
from .core.registrar import ReleaseRegistrar
from .db.base import get_session_local, init_database
from .db.index import MetadataIndex
from .ledger import ReleaseLedgerClient, create_ledger_service
from .logging_config import configure_logging
from .notifications import EmailChannel, LoggingEmailChannel, SmtpEmailChannel
from .routes import comments_router, packages_router, subscriptions_router
from .storage import create_artifact_store

# Initialize structured logging
logger = structlog.get_logger()

settings = get_settings()


def _package_version() -> str:
    try:
        return importlib.metadata.version("release-registry")
    except importlib.metadata.PackageNotFoundError:
        return "0.0.0+unknown"


def build_email_channel(settings: Settings) -> EmailChannel:
    """SMTP when a relay is configured, otherwise log-only."""
    if not settings.smtp_host:
        return LoggingEmailChannel()
    return SmtpEmailChannel(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        sender_email=settings.sender_email,
        sender_name=settings.sender_name,
        timeout=settings.notification_timeout_seconds,
    )


def build_registrar(settings: Settings, session_factory: sessionmaker) -> ReleaseRegistrar:
    """Wire the store, ledger, index and notifier described by ``settings``."""
    index = MetadataIndex(session_factory)
    ledger = ReleaseLedgerClient(
        create_ledger_service(
            settings.ledger_url,
            identity=settings.ledger_identity,
            api_key=settings.ledger_api_key,
            timeout=settings.ledger_timeout_seconds,
        )
    )
    notifier = SubscriberNotifier(
        index,
        build_email_channel(settings),
        base_url=settings.public_base_url,
        timeout_seconds=settings.notification_timeout_seconds,
    )
    return ReleaseRegistrar(
        store=create_artifact_store(settings.storage_uri),
        ledger=ledger,
        index=index,
        notifier=notifier,
        artifact_timeout=settings.artifact_timeout_seconds,
        ledger_timeout=settings.ledger_timeout_seconds,
        index_timeout=settings.index_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    configure_logging(settings.log_level, settings.log_format)
    logger.info("Starting Release Registry", environment=settings.environment)

    try:
        await init_database()
        app.state.registrar = build_registrar(settings, get_session_local())
        logger.info(
            "Registrar ready",
            storage=app.state.registrar.store.get_uri(),
            ledger=settings.ledger_url,
        )
    except Exception as e:
        logger.error(f"Failed to start application: {e}")
        raise

    yield

    logger.info("Shutting down Release Registry")
    await app.state.registrar.close()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    description="Publish, verify and distribute package releases anchored to a ledger",
    version=_package_version(),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RegistryError)
async def registry_error_handler(request: Request, exc: RegistryError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("registry_error", path=request.url.path, **exc.to_dict())
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


app.include_router(packages_router)
app.include_router(comments_router)
app.include_router(subscriptions_router)


@app.get("/health", tags=["system"])
async def health() -> Dict[str, Any]:
    """Basic health check endpoint."""
    return {"status": "ok"}


@app.get("/version", tags=["system"])
def version() -> Dict[str, str]:
    """Return the version of the application."""
    return {"version": _package_version()}
