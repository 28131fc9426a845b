"""Multipart session coordinator for streamrelay.

One PartUploadCoordinator owns one UploadSession from begin to complete or
abort:

    created -> session_open -> uploading -> finalizing -> completed | aborted

Chunks are dispatched as independent asyncio tasks in read order; their
acknowledgements arrive in any order and are re-sequenced by part number in
``finalize()``. Only the coordinator writes to the session; part tasks
return CompletedPart values and never touch it.

Nothing here retries. A failed part aborts the whole session.
"""

import asyncio
import logging

import streamrelay.metrics as _metrics
from streamrelay.chunker import ChunkReader
from streamrelay.errors import (
    FinalizeFailure,
    InternalError,
    PartUploadFailure,
    SessionStartFailure,
    StreamReadFailure,
    UploadStateError,
)
from streamrelay.models import CompletedPart, SessionState, UploadInfo, UploadSession
from streamrelay.transport.backend import StorageTransport

logger = logging.getLogger(__name__)

_TERMINAL = (SessionState.COMPLETED, SessionState.ABORTED)


class PartUploadCoordinator:
    """Drives one multipart upload session against a storage transport.

    Attributes:
        transport: The storage transport.
        bucket: Destination bucket.
        session: The session being driven.
    """

    def __init__(self, transport: StorageTransport, bucket: str, session: UploadSession) -> None:
        self.transport = transport
        self.bucket = bucket
        self.session = session

    def _log_extra(self, **kwargs) -> dict:
        extra = {"upload_id": self.session.session_id, "key": self.session.object_key}
        extra.update(kwargs)
        return extra

    async def begin(self) -> str:
        """Begin the backend session. Must complete before any chunk is read.

        Returns:
            The backend session (upload) id.

        Raises:
            SessionStartFailure: If the backend call fails.
            UploadStateError: If the session was already begun.
        """
        session = self.session
        if session.state is not SessionState.CREATED:
            raise UploadStateError("begin", session.state.value)

        try:
            session_id, response_metadata = await self.transport.begin_session(
                self.bucket, session.object_key
            )
        except Exception as exc:
            logger.error("Failed to begin upload session for %s: %s", session.object_key, exc)
            _record_upload("failed")
            raise SessionStartFailure(session.object_key) from exc

        session.session_id = session_id
        session.response_metadata = response_metadata or {}
        session.state = SessionState.SESSION_OPEN
        logger.info(
            "Began upload session %s for %s",
            session_id,
            session.object_key,
            extra=self._log_extra(),
        )
        return session_id

    def dispatch_part(self, chunk: bytes, part_number: int) -> None:
        """Schedule the upload of one part and record its task.

        Returns immediately; the upload runs concurrently with further reads.

        Raises:
            UploadStateError: Before begin, or once finalize has started.
        """
        session = self.session
        if session.state not in (SessionState.SESSION_OPEN, SessionState.UPLOADING):
            raise UploadStateError("dispatch a part", session.state.value)
        session.state = SessionState.UPLOADING

        logger.info(
            "Uploading part %d of [ %s ]",
            part_number,
            session.filename or session.object_key,
            extra=self._log_extra(part_number=part_number),
        )
        task = asyncio.create_task(
            self._upload_part(chunk, part_number),
            name=f"upload-part-{session.session_id}-{part_number}",
        )
        session.pending_parts.append(task)

    async def _upload_part(self, chunk: bytes, part_number: int) -> CompletedPart:
        session = self.session
        if _metrics.parts_in_flight is not None:
            _metrics.parts_in_flight.inc()
        try:
            etag = await self.transport.upload_part(
                self.bucket, session.object_key, session.session_id, part_number, chunk
            )
        except Exception:
            if _metrics.parts_total is not None:
                _metrics.parts_total.labels(status="error").inc()
            raise
        finally:
            if _metrics.parts_in_flight is not None:
                _metrics.parts_in_flight.dec()

        if _metrics.parts_total is not None:
            _metrics.parts_total.labels(status="ok").inc()
            _metrics.bytes_relayed_total.inc(len(chunk))
        logger.info(
            "Uploading completed of part %d of [ %s ]",
            part_number,
            session.filename or session.object_key,
            extra=self._log_extra(part_number=part_number),
        )
        return CompletedPart(part_number=part_number, etag=etag)

    async def relay(self, reader: ChunkReader) -> UploadInfo:
        """Pump every chunk from ``reader`` into part uploads, then finalize.

        Raises:
            StreamReadFailure: If the source fails mid-stream (session aborted).
            PartUploadFailure, FinalizeFailure: See ``finalize()``.
        """
        try:
            await reader.pump(self.session, self.dispatch_part)
        except asyncio.CancelledError:
            await self._cancel_pending()
            await self.abort()
            raise
        except Exception as exc:
            logger.error(
                "Reading [ %s ] failed after %d part(s): %s",
                self.session.filename or self.session.object_key,
                self.session.chunk_count,
                exc,
                extra=self._log_extra(),
            )
            await self._cancel_pending()
            await self.abort()
            _record_upload("failed")
            raise StreamReadFailure() from exc
        return await self.finalize()

    async def _cancel_pending(self) -> None:
        for task in self.session.pending_parts:
            task.cancel()
        await asyncio.gather(*self.session.pending_parts, return_exceptions=True)

    async def finalize(self) -> UploadInfo:
        """Wait for every part, then complete (or abort) the session.

        Returns:
            The final UploadInfo.

        Raises:
            PartUploadFailure: If any part failed (session aborted, never completed).
            FinalizeFailure: If the completion call failed (abort attempted).
            UploadStateError: If called before begin or more than once.
            asyncio.CancelledError: Re-raised after pending parts are
                cancelled and the session is aborted.
        """
        session = self.session
        if session.state not in (SessionState.SESSION_OPEN, SessionState.UPLOADING):
            raise UploadStateError("finalize", session.state.value)
        session.state = SessionState.FINALIZING

        try:
            results = await asyncio.gather(*session.pending_parts, return_exceptions=True)
        except asyncio.CancelledError:
            await self._cancel_pending()
            await self.abort()
            raise

        # pending_parts is in dispatch order, so index i holds part i + 1.
        failures: dict[int, BaseException] = {}
        completed: list[CompletedPart] = []
        for part_number, result in enumerate(results, start=1):
            if isinstance(result, BaseException):
                failures[part_number] = result
            else:
                completed.append(result)

        if failures:
            for part_number, exc in sorted(failures.items()):
                logger.error(
                    "Part %d of [ %s ] failed: %r",
                    part_number,
                    session.filename or session.object_key,
                    exc,
                    extra=self._log_extra(part_number=part_number),
                )
            await self.abort()
            _record_upload("failed")
            raise PartUploadFailure(failures, upload_id=session.session_id or "") from next(
                iter(failures.values())
            )

        completed.sort(key=lambda p: p.part_number)
        if [p.part_number for p in completed] != list(range(1, session.chunk_count + 1)):
            await self.abort()
            _record_upload("failed")
            raise InternalError(
                f"Acknowledged parts do not cover 1..{session.chunk_count}"
            )
        session.completed_parts = completed

        if session.chunk_count == 0:
            return await self._finalize_empty()

        try:
            result = await self.transport.complete_session(
                self.bucket, session.object_key, session.session_id, completed
            )
        except asyncio.CancelledError:
            await self.abort()
            raise
        except Exception as exc:
            logger.error(
                "Completing upload %s failed: %s", session.session_id, exc, extra=self._log_extra()
            )
            await self.abort()
            _record_upload("failed")
            raise FinalizeFailure(session.session_id or "") from exc

        session.state = SessionState.COMPLETED
        _record_upload("completed")
        logger.info(
            "Upload of [ %s ] is completed!",
            session.filename or session.object_key,
            extra=self._log_extra(),
        )
        return self._build_info(result or {})

    async def _finalize_empty(self) -> UploadInfo:
        """Complete a zero-byte upload.

        A multipart completion needs at least one part, so the session is
        aborted and the empty object is written with a single PutObject.
        """
        session = self.session
        try:
            await self.transport.abort_session(
                self.bucket, session.object_key, session.session_id
            )
        except Exception:
            logger.warning(
                "Failed to abort empty upload %s", session.session_id, extra=self._log_extra()
            )
        try:
            etag = await self.transport.put_object(self.bucket, session.object_key, b"")
        except Exception as exc:
            session.state = SessionState.ABORTED
            _record_upload("failed")
            raise FinalizeFailure(session.session_id or "") from exc

        session.state = SessionState.COMPLETED
        _record_upload("completed")
        logger.info(
            "Upload of empty [ %s ] is completed", session.object_key, extra=self._log_extra()
        )
        return self._build_info({"ETag": etag})

    async def abort(self) -> None:
        """Abort the backend session.

        Not retried. An abort failure is logged and does not replace the
        error that caused the abort.
        """
        session = self.session
        if session.state in _TERMINAL:
            return
        session.state = SessionState.ABORTED
        if session.session_id is None:
            return
        try:
            await self.transport.abort_session(
                self.bucket, session.object_key, session.session_id
            )
        except Exception:
            logger.warning(
                "Failed to abort upload %s", session.session_id, extra=self._log_extra()
            )
            return
        logger.info("Aborted upload %s", session.session_id, extra=self._log_extra())

    def _build_info(self, result: dict) -> UploadInfo:
        session = self.session
        return UploadInfo(
            id=session.session_id or "",
            filename=session.filename,
            key=session.object_key,
            bucket=self.bucket,
            size=session.size,
            chunks=session.chunk_count,
            parts=list(session.completed_parts),
            data=session.metadata,
            metadata=session.response_metadata,
            location=result.get("Location", ""),
            etag=result.get("ETag", ""),
        )


def _record_upload(outcome: str) -> None:
    if _metrics.uploads_total is not None:
        _metrics.uploads_total.labels(outcome=outcome).inc()
