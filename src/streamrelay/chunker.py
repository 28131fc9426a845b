"""Bounded chunking of an incoming byte stream.

ChunkReader turns a flow-controlled byte source into a single-pass sequence
of chunks of at most MAX_CHUNK_SIZE bytes. Every chunk except the last is
exactly MAX_CHUNK_SIZE bytes, which keeps all non-final parts above the
5 MiB multipart minimum.

The source is only read while no chunk handoff is in progress: ``pump()``
hands a chunk to the dispatcher, waits for the dispatcher's bookkeeping to
return, and only then pulls again.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from typing import Protocol

from streamrelay.models import UploadSession

logger = logging.getLogger(__name__)

MAX_CHUNK_SIZE = 9_000_000


class ByteSource(Protocol):
    """Anything with an async ``read(size)`` returning b"" at end of stream."""

    async def read(self, size: int = -1) -> bytes: ...


class AsyncIteratorSource:
    """Adapt an async iterator of byte pieces (e.g. a request body) to read(size)."""

    def __init__(self, iterator: AsyncIterator[bytes]) -> None:
        self._iterator = iterator.__aiter__()
        self._buffer = bytearray()
        self._exhausted = False

    async def read(self, size: int = -1) -> bytes:
        while not self._exhausted and (size < 0 or len(self._buffer) < size):
            try:
                piece = await self._iterator.__anext__()
            except StopAsyncIteration:
                self._exhausted = True
                break
            self._buffer.extend(piece)

        if size < 0 or size >= len(self._buffer):
            data = bytes(self._buffer)
            self._buffer.clear()
        else:
            data = bytes(self._buffer[:size])
            del self._buffer[:size]
        return data


class ChunkReader:
    """Single-pass reader yielding bounded chunks from a ByteSource.

    Attributes:
        max_chunk_size: Upper bound on the size of each chunk.
    """

    def __init__(self, source: ByteSource, max_chunk_size: int = MAX_CHUNK_SIZE) -> None:
        if max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be positive")
        self.max_chunk_size = max_chunk_size
        self._source = source
        self._started = False
        self._ended = False

    @property
    def ended(self) -> bool:
        """True once the source has reported end of stream."""
        return self._ended

    async def _read_chunk(self) -> bytes:
        """Read until a full chunk is buffered or the source ends."""
        first = await self._source.read(self.max_chunk_size)
        if not first:
            self._ended = True
            return b""
        if len(first) >= self.max_chunk_size:
            return first

        buf = bytearray(first)
        while len(buf) < self.max_chunk_size:
            piece = await self._source.read(self.max_chunk_size - len(buf))
            if not piece:
                self._ended = True
                break
            buf.extend(piece)
        return bytes(buf)

    async def __aiter__(self) -> AsyncIterator[bytes]:
        if self._started:
            raise RuntimeError("ChunkReader can only be iterated once")
        self._started = True
        while not self._ended:
            chunk = await self._read_chunk()
            if chunk:
                yield chunk

    async def pump(
        self, session: UploadSession, dispatch: Callable[[bytes, int], None]
    ) -> int:
        """Feed every chunk to ``dispatch`` with its part number.

        ``dispatch`` must only do bookkeeping (schedule the upload, record the
        task); the next read starts as soon as it returns.

        Args:
            session: The session whose counters are advanced per chunk.
            dispatch: Called as ``dispatch(chunk, part_number)``.

        Returns:
            The number of chunks dispatched.
        """
        async for chunk in self:
            if session.dispatch_in_flight:
                raise RuntimeError("chunk handoff already in progress")
            session.dispatch_in_flight = True
            try:
                session.chunk_count += 1
                part_number = session.chunk_count
                session.bytes_observed += len(chunk)
                dispatch(chunk, part_number)
            finally:
                session.dispatch_in_flight = False
        logger.debug("End of stream after %d chunk(s)", session.chunk_count)
        return session.chunk_count
