"""Abstract storage transport protocol for streamrelay."""

from typing import Any, Protocol

from streamrelay.models import CompletedPart


class StorageTransport(Protocol):
    """Protocol defining the multipart object-storage interface.

    Each call is a single attempt; implementations raise on failure and
    never retry.
    """

    async def init(self) -> None:
        """Initialize the transport (open clients, verify the bucket, etc.)."""
        ...

    async def close(self) -> None:
        """Release resources held by the transport."""
        ...

    async def begin_session(self, bucket: str, key: str) -> tuple[str, dict[str, Any]]:
        """Begin a multipart upload session.

        Args:
            bucket: The bucket name.
            key: The object key.

        Returns:
            The session (upload) id and the backend's response metadata.
        """
        ...

    async def upload_part(
        self, bucket: str, key: str, session_id: str, part_number: int, body: bytes
    ) -> str:
        """Upload one part of a session.

        Args:
            bucket: The bucket name.
            key: The object key.
            session_id: The upload id returned by begin_session.
            part_number: The 1-based part number.
            body: The raw bytes of this part.

        Returns:
            The ETag of the stored part.
        """
        ...

    async def complete_session(
        self, bucket: str, key: str, session_id: str, parts: list[CompletedPart]
    ) -> dict[str, Any]:
        """Complete a session from its acknowledged parts.

        Args:
            bucket: The bucket name.
            key: The object key.
            session_id: The upload id.
            parts: Every part of the upload in part-number order.

        Returns:
            Backend details of the final object (e.g. Location, ETag).
        """
        ...

    async def abort_session(self, bucket: str, key: str, session_id: str) -> None:
        """Abort a session and discard its parts.

        Args:
            bucket: The bucket name.
            key: The object key.
            session_id: The upload id.
        """
        ...

    async def put_object(self, bucket: str, key: str, body: bytes) -> str:
        """Store a whole object in a single request.

        Args:
            bucket: The bucket name.
            key: The object key.
            body: The object bytes.

        Returns:
            The ETag of the stored object.
        """
        ...
