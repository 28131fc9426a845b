"""Streaming upload engine: the entry point the HTTP layer calls per file.

For each incoming file the engine parses the caller metadata, derives the
object key, begins a multipart session (before any byte is read), and relays
the stream through a ChunkReader into a PartUploadCoordinator.
"""

import logging
from collections.abc import Callable

from streamrelay.chunker import MAX_CHUNK_SIZE, ChunkReader
from streamrelay.config import StreamRelayConfig
from streamrelay.coordinator import PartUploadCoordinator
from streamrelay.errors import InvalidUploadRequest
from streamrelay.models import (
    IncomingFile,
    UploadInfo,
    UploadSession,
    build_object_key,
    parse_metadata,
)
from streamrelay.transport.backend import StorageTransport

logger = logging.getLogger(__name__)

UploadCallback = Callable[[Exception | None, UploadInfo | None], None]


class StreamingUploadEngine:
    """Relays incoming files to a bucket as multipart uploads.

    Attributes:
        transport: The storage transport.
        bucket: Destination bucket.
        namespace_field: Metadata field whose value becomes a key subdirectory.
        key_prefix: Prefix prepended to every object key.
        chunk_size: Part size; every part but the last has exactly this size.
    """

    def __init__(
        self,
        transport: StorageTransport,
        bucket: str,
        namespace_field: str = "client",
        key_prefix: str = "",
        chunk_size: int = MAX_CHUNK_SIZE,
    ) -> None:
        self.transport = transport
        self.bucket = bucket
        self.namespace_field = namespace_field
        self.key_prefix = key_prefix
        self.chunk_size = chunk_size

    def new_session(self, incoming: IncomingFile) -> UploadSession:
        """Build the session for an incoming file (nothing is sent yet)."""
        if not incoming.filename:
            raise InvalidUploadRequest("The uploaded file has no filename.")
        metadata = parse_metadata(incoming.field_data)
        return UploadSession(
            object_key=build_object_key(
                incoming.filename, metadata, self.namespace_field, self.key_prefix
            ),
            filename=incoming.filename,
            total_bytes_declared=incoming.declared_size or 0,
            metadata=metadata,
        )

    async def upload(self, incoming: IncomingFile) -> UploadInfo:
        """Relay one file and return its final info.

        Raises:
            UploadError: Any fatal failure; a begun session is aborted first.
        """
        session = self.new_session(incoming)
        coordinator = PartUploadCoordinator(self.transport, self.bucket, session)
        await coordinator.begin()

        logger.info(
            "Starting upload of %s",
            incoming.filename,
            extra={"upload_id": session.session_id, "key": session.object_key},
        )
        reader = ChunkReader(incoming.stream, max_chunk_size=self.chunk_size)
        return await coordinator.relay(reader)

    async def handle_file(self, incoming: IncomingFile, callback: UploadCallback) -> None:
        """Relay one file and report through ``callback``.

        Adapter for callback-style callers, such as a form-parsing layer that
        hands over files and waits to be told the outcome. The HTTP routes
        await ``upload()`` directly and let errors reach the exception
        handlers.

        ``callback(None, info)`` on success, ``callback(error, None)`` on any
        failure.
        """
        try:
            info = await self.upload(incoming)
        except Exception as exc:
            logger.error("Upload of [ %s ] failed: %s", incoming.filename, exc)
            callback(exc, None)
            return
        callback(None, info)


def create_engine(config: StreamRelayConfig, transport: StorageTransport) -> StreamingUploadEngine:
    """Create an engine for the configured bucket and key layout."""
    return StreamingUploadEngine(
        transport=transport,
        bucket=config.storage.bucket,
        namespace_field=config.upload.namespace_field,
        key_prefix=config.upload.key_prefix,
    )
