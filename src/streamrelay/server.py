"""FastAPI application factory and route setup for streamrelay."""

import logging
import secrets
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from streamrelay.chunker import AsyncIteratorSource
from streamrelay.config import StreamRelayConfig
from streamrelay.engine import StreamingUploadEngine, create_engine
from streamrelay.errors import InvalidUploadRequest, UploadError
from streamrelay.formparser import StreamingFormReader
from streamrelay.models import IncomingFile
from streamrelay.transport import create_transport

logger = logging.getLogger(__name__)

# Form text field whose value is the metadata of the file parts that follow it.
METADATA_FORM_FIELD = "metadata"
METADATA_HEADER = "x-upload-metadata"

# Module-level singleton so multiple create_app() calls (e.g. in tests)
# don't re-register the same Prometheus collectors in the global registry.
_instrumentator = None


def _get_instrumentator():
    global _instrumentator
    if _instrumentator is None:
        from prometheus_fastapi_instrumentator import Instrumentator

        _instrumentator = Instrumentator(
            should_instrument_requests_inprogress=True,
            excluded_handlers=["/metrics"],
        )
    return _instrumentator


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(config: StreamRelayConfig) -> FastAPI:
    """Create and configure the streamrelay FastAPI application.

    The lifespan context manager creates and initializes the storage
    transport on startup, builds the upload engine, and closes the
    transport on shutdown.

    Args:
        config: The loaded configuration.

    Returns:
        A configured FastAPI application ready to run.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        transport = create_transport(config.storage)
        await transport.init()
        app.state.transport = transport
        app.state.engine = create_engine(config, transport)
        logger.info("Storage transport initialized: %s", config.storage.backend)

        yield

        await transport.close()
        logger.info("Storage transport closed")

    app = FastAPI(
        title="streamrelay",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )
    app.state.config = config

    _register_exception_handlers(app)
    _register_middleware(app)

    if config.observability.metrics:
        import streamrelay.metrics as _metrics

        _metrics.init_metrics()
        _get_instrumentator().instrument(app, metric_namespace="streamrelay").expose(
            app, endpoint="/metrics"
        )

    _setup_routes(app, config)

    return app


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _error_response(code: str, message: str, status: int, request: Request, extra=None):
    body = {
        "error": {
            "code": code,
            "message": message,
            "request_id": getattr(request.state, "request_id", ""),
            **(extra or {}),
        }
    }
    return JSONResponse(body, status_code=status)


def _register_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers on the FastAPI app."""

    @app.exception_handler(UploadError)
    async def upload_error_handler(request: Request, exc: UploadError) -> Response:
        """Render UploadError subclasses as JSON error bodies."""
        return _error_response(exc.code, exc.message, exc.http_status, request, exc.extra_fields)

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> Response:
        """Catch unexpected exceptions and return InternalError."""
        logger.exception("Unhandled exception in request handler")
        return _error_response(
            "InternalError",
            "We encountered an internal error. Please try again.",
            500,
            request,
        )


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


def _register_middleware(app: FastAPI) -> None:
    """Register the request-id / access-log middleware."""

    # Paths to suppress from per-request logging
    _QUIET_PATHS = {"/metrics", "/health"}

    @app.middleware("http")
    async def request_log_middleware(request: Request, call_next) -> Response:
        """Tag every response with X-Request-Id and log one line per request."""
        request_id = secrets.token_hex(8).upper()
        request.state.request_id = request_id
        start = time.monotonic()

        response = await call_next(request)

        duration_ms = round((time.monotonic() - start) * 1000, 2)
        response.headers["X-Request-Id"] = request_id

        if request.url.path not in _QUIET_PATHS:
            logger.info(
                "%s %s %d %.2fms",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                    "request_id": request_id,
                },
            )

        return response


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------


def _content_length(request: Request) -> int:
    value = request.headers.get("content-length")
    if not value:
        return 0
    try:
        return max(int(value), 0)
    except ValueError:
        return 0


def _setup_routes(app: FastAPI, config: StreamRelayConfig) -> None:
    """Register the health and upload routes.

    Args:
        app: The FastAPI application to attach routes to.
        config: The configuration.
    """

    def engine() -> StreamingUploadEngine:
        return app.state.engine

    @app.get("/health")
    async def health_check() -> Response:
        """Return static health status and the configured backend."""
        return JSONResponse({"status": "ok", "backend": config.storage.backend})

    @app.post("/uploads")
    async def upload_form(request: Request) -> Response:
        """Relay every file part of a multipart form while it arrives.

        A ``metadata`` text field sent before a file part is that file's
        metadata; otherwise the file part's field name is its metadata.
        """
        form = StreamingFormReader(request.stream(), request.headers.get("content-type"))
        results = []
        async for part in form:
            field_data = form.fields.get(METADATA_FORM_FIELD, part.field_name)
            incoming = IncomingFile(
                stream=part.stream,
                filename=part.filename,
                field_data=field_data,
            )
            info = await engine().upload(incoming)
            results.append(info.to_dict())

        if not results:
            raise InvalidUploadRequest("The form contains no file part.")
        return JSONResponse({"files": results})

    @app.put("/uploads/{filename:path}")
    async def upload_raw(filename: str, request: Request) -> Response:
        """Relay a raw request body without buffering it."""
        incoming = IncomingFile(
            stream=AsyncIteratorSource(request.stream()),
            filename=filename,
            declared_size=_content_length(request),
            field_data=request.headers.get(METADATA_HEADER),
        )
        info = await engine().upload(incoming)
        return JSONResponse(info.to_dict())
