"""Data model types for streamrelay uploads.

These dataclasses describe one streamed upload: the inbound file handle,
the multipart session the coordinator drives, and the info handed back to
the caller once the session is completed.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from streamrelay.chunker import ByteSource

logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    """Lifecycle states of an UploadSession."""

    CREATED = "created"
    SESSION_OPEN = "session_open"
    UPLOADING = "uploading"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class CompletedPart:
    """An acknowledged part.

    Attributes:
        part_number: 1-based part number.
        etag: ETag returned by the backend for this part.
    """

    part_number: int
    etag: str

    def to_dict(self) -> dict[str, Any]:
        """Render in the shape the completion request expects."""
        return {"PartNumber": self.part_number, "ETag": self.etag}


@dataclass
class IncomingFile:
    """One file handed over by the HTTP layer.

    Attributes:
        stream: Byte source with an async read(size) method.
        filename: Original client-side filename.
        declared_size: Size reported by the source, 0 when unknown.
        field_data: Caller-supplied metadata, expected to be a JSON string.
    """

    stream: ByteSource
    filename: str
    declared_size: int = 0
    field_data: str | None = None


@dataclass
class UploadSession:
    """State of one multipart upload, owned by a PartUploadCoordinator.

    Attributes:
        object_key: Destination key in the bucket.
        filename: Original client-side filename.
        total_bytes_declared: Size reported by the source, 0 when unknown.
        bytes_observed: Running total of bytes read so far.
        session_id: Backend upload id, None until the session begins.
        chunk_count: Chunks accepted so far; also the last part number.
        dispatch_in_flight: True while a chunk handoff is being dispatched.
        pending_parts: Part upload tasks in dispatch order.
        completed_parts: Acknowledged parts sorted by part number.
        metadata: Parsed caller metadata.
        response_metadata: Backend response metadata from the begin call.
        state: Current lifecycle state.
    """

    object_key: str
    filename: str = ""
    total_bytes_declared: int = 0
    bytes_observed: int = 0
    session_id: str | None = None
    chunk_count: int = 0
    dispatch_in_flight: bool = False
    pending_parts: list[asyncio.Task[CompletedPart]] = field(default_factory=list)
    completed_parts: list[CompletedPart] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    response_metadata: dict[str, Any] = field(default_factory=dict)
    state: SessionState = SessionState.CREATED

    @property
    def size(self) -> int:
        """Declared size, falling back to the observed byte count."""
        return self.total_bytes_declared or self.bytes_observed


@dataclass
class UploadInfo:
    """Final result of a streamed upload, passed to the completion callback.

    Attributes:
        id: Backend upload id of the session.
        filename: Original client-side filename.
        key: Object key written.
        bucket: Destination bucket.
        size: Final size in bytes.
        chunks: Number of parts uploaded.
        parts: Completed parts in part-number order.
        data: Parsed caller metadata.
        metadata: Backend response metadata from the begin call.
        location: Object location reported on completion, if any.
        etag: ETag of the final object, if reported.
    """

    id: str
    filename: str
    key: str
    bucket: str
    size: int
    chunks: int
    parts: list[CompletedPart] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    location: str = ""
    etag: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Render as JSON-ready data."""
        return {
            "id": self.id,
            "filename": self.filename,
            "key": self.key,
            "bucket": self.bucket,
            "size": self.size,
            "chunks": self.chunks,
            "parts": [p.to_dict() for p in self.parts],
            "data": self.data,
            "metadata": self.metadata,
            "location": self.location,
            "etag": self.etag,
        }


def parse_metadata(raw: str | bytes | None) -> dict[str, Any]:
    """Decode caller metadata, degrading to an empty dict.

    Anything that is not a JSON object (malformed text, arrays, scalars,
    None) yields ``{}``; the upload proceeds either way.
    """
    if raw is None or raw == "" or raw == b"":
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.debug("Ignoring non-JSON upload metadata: %r", raw)
        return {}
    if not isinstance(value, dict):
        logger.debug("Ignoring non-object upload metadata: %r", raw)
        return {}
    return value


def build_object_key(
    filename: str,
    metadata: dict[str, Any],
    namespace_field: str = "client",
    key_prefix: str = "",
) -> str:
    """Derive the object key for an upload.

    ``key_prefix + namespace + "/" + filename`` when the metadata carries a
    non-empty ``namespace_field`` value, else ``key_prefix + filename``.
    """
    namespace = metadata.get(namespace_field) if namespace_field else None
    if namespace is None or namespace == "" or isinstance(namespace, (dict, list)):
        return f"{key_prefix}{filename}"
    return f"{key_prefix}{namespace}/{filename}"
