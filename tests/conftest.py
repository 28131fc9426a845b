"""Shared pytest fixtures for streamrelay tests.

A single FastAPI app is created per test session to avoid duplicate
Prometheus metric registration errors (the instrumentator registers
collectors in the global prometheus_client registry).

The transport and engine are set on app.state directly instead of running
the lifespan, so each test gets a fresh in-memory transport.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from streamrelay.config import (
    ObservabilityConfig,
    StorageConfig,
    StreamRelayConfig,
    UploadConfig,
)
from streamrelay.engine import StreamingUploadEngine
from streamrelay.server import create_app
from tests.fakes import TEST_CHUNK_SIZE, FlakyTransport


@pytest.fixture
def transport() -> FlakyTransport:
    """A fresh recording in-memory transport."""
    return FlakyTransport()


@pytest.fixture(scope="session")
def config() -> StreamRelayConfig:
    """Test configuration: memory backend, metrics on."""
    return StreamRelayConfig(
        storage=StorageConfig(backend="memory", bucket="test-bucket"),
        upload=UploadConfig(namespace_field="client", key_prefix=""),
        observability=ObservabilityConfig(metrics=True),
    )


@pytest.fixture(scope="session")
def app(config: StreamRelayConfig):
    """Create a single test FastAPI application for the whole session."""
    return create_app(config)


@pytest.fixture
async def client(app, config, transport) -> AsyncClient:
    """Async test client with a fresh transport and a small-part engine."""
    app.state.transport = transport
    app.state.engine = StreamingUploadEngine(
        transport=transport,
        bucket=config.storage.bucket,
        namespace_field=config.upload.namespace_field,
        key_prefix=config.upload.key_prefix,
        chunk_size=TEST_CHUNK_SIZE,
    )

    asgi = ASGITransport(app=app)
    async with AsyncClient(transport=asgi, base_url="http://testserver") as ac:
        yield ac
