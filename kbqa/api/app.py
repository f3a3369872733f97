"""FastAPI application factory."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kbqa import __version__
from kbqa.api.dependencies import Components, build_components, get_config
from kbqa.api.routes import chat, knowledge, search
from kbqa.errors import (
    EmbeddingError,
    GenerationUnavailableError,
    IngestionError,
    MalformedRequestError,
    PolicyViolationError,
    ProviderError,
    QuotaExceededError,
    RetrievalUnavailableError,
    VectorStoreError,
)
from kbqa.logging_utils import configure_logging

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "The service is temporarily unavailable. Please try again shortly."


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Builds components on startup (unless provided), opens the vector store
    and warms the lexical index. External failures are recorded rather than
    blocking startup so health checks keep answering.
    """
    app.state.startup_errors = []

    components: Optional[Components] = getattr(app.state, "components", None)
    if components is None:
        config = get_config()
        configure_logging(config.log_level)
        components = build_components(config)
        app.state.components = components

    logger.info("starting KB Q&A API")
    try:
        await asyncio.to_thread(components.vector_store.initialize)
        await components.pipeline.warm_lexical_index()
    except Exception as e:
        logger.error("startup dependency failed: %r", e)
        app.state.startup_errors.append(f"{type(e).__name__}: {e}")

    yield

    logger.info("shutting down KB Q&A API")
    if components.summarizer is not None:
        await components.summarizer.drain()
    await asyncio.to_thread(components.vector_store.close)


def _error(status_code: int, error: str, detail: Optional[str] = None) -> JSONResponse:
    body = {"error": error}
    if detail:
        body["detail"] = detail
    return JSONResponse(status_code=status_code, content=body)


def register_error_handlers(app: FastAPI) -> None:
    """Map typed service errors to HTTP responses."""

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return _error(400, "Malformed request", str(exc.errors()))

    @app.exception_handler(MalformedRequestError)
    async def malformed_request(request: Request, exc: MalformedRequestError):
        return _error(400, "Malformed request", str(exc))

    @app.exception_handler(PolicyViolationError)
    async def policy_violation(request: Request, exc: PolicyViolationError):
        return _error(403, str(exc))

    @app.exception_handler(QuotaExceededError)
    async def quota_exceeded(request: Request, exc: QuotaExceededError):
        return _error(413, "Document exceeds ingest limits", str(exc))

    @app.exception_handler(IngestionError)
    async def ingestion_error(request: Request, exc: IngestionError):
        return _error(400, "Ingestion failed", str(exc))

    @app.exception_handler(RetrievalUnavailableError)
    @app.exception_handler(GenerationUnavailableError)
    @app.exception_handler(ProviderError)
    @app.exception_handler(EmbeddingError)
    @app.exception_handler(VectorStoreError)
    async def unavailable(request: Request, exc: Exception):
        logger.error("dependency unavailable: path=%s error=%r", request.url.path, exc)
        return _error(503, UNAVAILABLE_MESSAGE)


def create_app(components: Optional[Components] = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        components: Prebuilt components; built from configuration when omitted

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="KB Q&A API",
        description="Hybrid-search question answering over a private knowledge base",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.components = components

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(chat.router)
    app.include_router(search.router)
    app.include_router(knowledge.router)

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        errors = getattr(app.state, "startup_errors", [])
        if errors:
            return {"status": "degraded", "startup_errors": errors}
        return {"status": "healthy"}

    return app
