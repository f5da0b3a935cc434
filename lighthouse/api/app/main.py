import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .collaborators import AuditSink, CaseDirectory, LoggingAuditSink, Renderer
from .config import Settings, settings as default_settings
from .content_routes import ContentServices, router as content_router
from .db import Base, engine
from .errors import (
    ConfigurationError,
    ConflictError,
    EvidenceStoreError,
    IntegrityError,
    NotFoundError,
)
from .export import PdfExportRenderer
from .integrity import IntegrityVerifier
from .logging_utils import configure_logging
from .references import ReferenceResolver
from .storage import BlobStoreGateway, StorageConfig

logger = logging.getLogger(__name__)


def startup(services: ContentServices) -> None:
    """Create ledger tables and check the bucket exists."""
    if os.getenv("SKIP_SQL_MIGRATIONS", "").strip().lower() in ("1", "true", "yes"):
        logger.info("SKIP_SQL_MIGRATIONS=true -> skipping table bootstrap")
    else:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created")

    # A missing bucket is a deployment error; refuse to start.
    services.gateway.ensure_bucket()
    logger.info("Storage bucket `%s` verified", services.gateway.bucket)


def _error_body(exc: EvidenceStoreError) -> dict:
    body: dict = {"detail": str(exc)}
    for attr in ("object_key", "version_id", "algorithm"):
        value = getattr(exc, attr, None)
        if value is not None:
            body[attr] = value
    return body


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content=_error_body(exc))

    @app.exception_handler(ConflictError)
    async def conflict(request: Request, exc: ConflictError):
        return JSONResponse(status_code=409, content=_error_body(exc))

    @app.exception_handler(IntegrityError)
    async def integrity_failed(request: Request, exc: IntegrityError):
        logger.error("Integrity failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content=_error_body(exc))

    @app.exception_handler(ConfigurationError)
    async def misconfigured(request: Request, exc: ConfigurationError):
        logger.critical("Storage misconfigured: %s", exc)
        return JSONResponse(status_code=503, content=_error_body(exc))


def create_app(
    directory: CaseDirectory,
    *,
    renderer: Renderer | None = None,
    audit: AuditSink | None = None,
    gateway: BlobStoreGateway | None = None,
    settings: Settings | None = None,
    bootstrap: bool = True,
) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)

    gateway = gateway or BlobStoreGateway(StorageConfig.from_settings(settings))
    verifier = IntegrityVerifier.from_settings(gateway, settings)
    services = ContentServices(
        gateway=gateway,
        verifier=verifier,
        resolver=ReferenceResolver(verifier, gateway, marker=settings.LOCAL_ASSET_MARKER),
        directory=directory,
        renderer=renderer or PdfExportRenderer(),
        audit=audit if audit is not None else LoggingAuditSink(),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if bootstrap:
            startup(services)
        yield

    app = FastAPI(title="Lighthouse Evidence Store", version="0.1.0", lifespan=lifespan)
    app.state.services = services
    register_exception_handlers(app)
    app.include_router(content_router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app
