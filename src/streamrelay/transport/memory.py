"""In-memory storage transport for streamrelay.

Implements the StorageTransport protocol with Python dictionaries. Sessions
and their parts live in memory until completed or aborted; completed objects
are kept in ``objects``. Validation follows S3: unknown sessions, missing
parts, ETag mismatches and empty part lists are rejected.

Intended for local development and tests; nothing is persisted.
"""

import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from streamrelay.models import CompletedPart

logger = logging.getLogger(__name__)


class MemoryTransportError(Exception):
    """Raised when the memory transport cannot fulfill a request."""


class NoSuchSession(MemoryTransportError):
    """The session id is unknown, or was completed or aborted."""


class InvalidPart(MemoryTransportError):
    """A completion request named a part that was never stored or has a stale ETag."""


@dataclass
class _Session:
    bucket: str
    key: str
    parts: dict[int, tuple[bytes, str]] = field(default_factory=dict)


class MemoryTransport:
    """Storage transport that holds sessions and objects in memory.

    Attributes:
        objects: Completed objects keyed by (bucket, key) -> (data, etag).
    """

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], tuple[bytes, str]] = {}
        self._sessions: dict[str, _Session] = {}

    @property
    def open_sessions(self) -> list[str]:
        """Ids of sessions that are neither completed nor aborted."""
        return list(self._sessions)

    def _get_session(self, bucket: str, key: str, session_id: str) -> _Session:
        session = self._sessions.get(session_id)
        if session is None or (session.bucket, session.key) != (bucket, key):
            raise NoSuchSession(f"No such upload: {session_id}")
        return session

    async def init(self) -> None:
        logger.info("Memory transport initialized")

    async def close(self) -> None:
        self._sessions.clear()

    async def begin_session(self, bucket: str, key: str) -> tuple[str, dict[str, Any]]:
        session_id = uuid.uuid4().hex
        self._sessions[session_id] = _Session(bucket=bucket, key=key)
        return session_id, {"HTTPStatusCode": 200, "RequestId": uuid.uuid4().hex[:16]}

    async def upload_part(
        self, bucket: str, key: str, session_id: str, part_number: int, body: bytes
    ) -> str:
        session = self._get_session(bucket, key, session_id)
        if not 1 <= part_number <= 10000:
            raise MemoryTransportError(f"Part number out of range: {part_number}")
        etag = f'"{hashlib.md5(body).hexdigest()}"'
        session.parts[part_number] = (bytes(body), etag)
        return etag

    async def complete_session(
        self, bucket: str, key: str, session_id: str, parts: list[CompletedPart]
    ) -> dict[str, Any]:
        """Assemble the listed parts into the final object.

        The object ETag follows the S3 multipart convention:
        md5 of the concatenated binary part digests, suffixed with ``-N``.
        """
        session = self._get_session(bucket, key, session_id)
        if not parts:
            raise MemoryTransportError("A multipart upload needs at least one part")

        numbers = [p.part_number for p in parts]
        if numbers != sorted(set(numbers)):
            raise InvalidPart("Parts must be listed in ascending order without repeats")

        chunks = []
        digests = b""
        for part in parts:
            stored = session.parts.get(part.part_number)
            if stored is None or stored[1] != part.etag:
                raise InvalidPart(f"Invalid part {part.part_number}")
            chunks.append(stored[0])
            digests += bytes.fromhex(stored[1].strip('"'))

        etag = f"{hashlib.md5(digests).hexdigest()}-{len(parts)}"
        self.objects[(bucket, key)] = (b"".join(chunks), etag)
        del self._sessions[session_id]
        return {"Location": f"memory://{bucket}/{key}", "ETag": etag}

    async def abort_session(self, bucket: str, key: str, session_id: str) -> None:
        self._get_session(bucket, key, session_id)
        del self._sessions[session_id]

    async def put_object(self, bucket: str, key: str, body: bytes) -> str:
        etag = hashlib.md5(body).hexdigest()
        self.objects[(bucket, key)] = (bytes(body), etag)
        return etag
