"""Application factory for the FastAPI service."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .chat import SessionRegistry
from .client import ProviderClient
from .config import PROJECT_ROOT, Settings, get_settings
from .credentials import SettingsCredentialSource
from .providers import build_adapters
from .repository import ChatRepository
from .routers.chat import router as chat_router
from .routers.conversations import router as conversations_router
from .routers.models import router as models_router
from .routers.uploads import router as uploads_router
from .services.attachments import AttachmentService
from .services.blob_store import BlobStore, GCSBlobStore
from .services.model_catalog import ModelCatalog

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _configure_logging() -> None:
    """Configure logging based on LOG_LEVEL environment variable."""
    # Load .env file first to ensure LOG_FILE is available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    handlers: list[logging.Handler] = []
    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT))
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT))
    handlers.append(console_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    logging.getLogger("polychat").setLevel(log_level)
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        logging.getLogger(name).setLevel(log_level)

    # Raw provider traffic is only interesting when debugging
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
    else:
        logging.getLogger("httpx").setLevel(log_level)
        logging.getLogger("httpcore").setLevel(log_level)


def _resolve_under(base: Path, p: Path) -> Path:
    # Allow absolute paths as-is (useful for tests and external mounts).
    if p.is_absolute():
        return p.resolve()
    resolved = (base / p).resolve()
    if not resolved.is_relative_to(base):
        raise ValueError(f"Configured path {resolved} escapes project root {base}")
    return resolved


def create_app(
    settings: Settings | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    blob_store: BlobStore | None = None,
) -> FastAPI:
    """Build the application.

    ``http_client`` and ``blob_store`` replace the pooled provider client and
    the Google Cloud Storage bucket, mainly for tests.
    """

    _configure_logging()

    settings = settings or get_settings()
    database_path = _resolve_under(PROJECT_ROOT, settings.chat_database_path)

    repository = ChatRepository(database_path)
    catalog = ModelCatalog(repository)
    provider_client = ProviderClient(settings, http_client=http_client)
    blob_store = blob_store or GCSBlobStore.from_settings(settings)
    registry = SessionRegistry(
        repository,
        provider_client,
        build_adapters(settings),
        SettingsCredentialSource(settings),
        title_length=settings.conversation_title_length,
        max_sessions=settings.max_chat_sessions,
        idle_ttl=settings.chat_session_idle_ttl,
        resolve_attachment_url=blob_store.refresh_url,
    )
    attachment_service = AttachmentService(
        blob_store,
        max_size_bytes=settings.attachments_max_size_bytes,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await repository.initialize()
        await catalog.seed_defaults()
        if not attachment_service.is_available():
            logger.warning("Image uploads disabled: no Google Cloud credentials found")
        try:
            yield
        finally:
            registry.clear()
            try:
                await asyncio.wait_for(provider_client.aclose(), timeout=10.0)
            except asyncio.TimeoutError:
                logger.warning("Provider client shutdown timed out after 10s")
            await repository.close()

    app = FastAPI(
        title="Polychat",
        version="0.1.0",
        description="Streaming chat backend for OpenAI, Claude and Gemini models.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.chat_repository = repository
    app.state.model_catalog = catalog
    app.state.session_registry = registry
    app.state.attachment_service = attachment_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_router)
    app.include_router(conversations_router)
    app.include_router(models_router)
    app.include_router(uploads_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str | int]:
        return {
            "status": "ok",
            "default_model": settings.default_model,
            "sessions": len(registry),
        }

    return app


__all__ = ["create_app"]
