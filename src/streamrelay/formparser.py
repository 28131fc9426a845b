"""Streaming multipart/form-data reader.

The request body is pushed piece by piece through python-multipart's
``MultipartParser``. Its callbacks queue part events, and each file part is
exposed as a ByteSource that pulls more of the body only when the chunker
asks for bytes. A file's first part upload can therefore start while the
rest of the form is still arriving, and nothing is spooled to disk.

Text fields are collected into ``fields`` as they are passed; a text field
only applies to the file parts that follow it.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import AsyncIterator
from dataclasses import dataclass

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from streamrelay.chunker import AsyncIteratorSource
from streamrelay.errors import InvalidUploadRequest

logger = logging.getLogger(__name__)

# Upper bound on a text field held in memory.
MAX_FIELD_SIZE = 1024 * 1024

_HEADERS = "headers"
_DATA = "data"
_END = "end"


@dataclass
class FormFile:
    """One file part of a streamed form.

    Attributes:
        field_name: The form field name of the part.
        filename: The client-supplied filename.
        content_type: The part's Content-Type, if sent.
        stream: ByteSource over the part body.
    """

    field_name: str
    filename: str
    content_type: str
    stream: AsyncIteratorSource


class StreamingFormReader:
    """Iterate the file parts of a multipart/form-data body without buffering it.

    Usage::

        form = StreamingFormReader(request.stream(), request.headers.get("content-type"))
        async for part in form:
            ...  # read part.stream fully before advancing

    Raises:
        InvalidUploadRequest: If the body is not multipart/form-data or is malformed.
    """

    def __init__(self, body: AsyncIterator[bytes], content_type: str | None) -> None:
        ctype, params = parse_options_header(content_type or "")
        if ctype != b"multipart/form-data":
            raise InvalidUploadRequest("Expected a multipart/form-data body.")
        boundary = params.get(b"boundary")
        if not boundary:
            raise InvalidUploadRequest("The multipart body has no boundary.")

        self.fields: dict[str, str] = {}
        self._body = body.__aiter__()
        self._body_done = False
        self._events: deque[tuple[str, object]] = deque()
        self._header_name = bytearray()
        self._header_value = bytearray()
        self._part_headers: dict[bytes, bytes] = {}
        self._parser = MultipartParser(
            boundary,
            callbacks={
                "on_part_begin": self._on_part_begin,
                "on_header_field": self._on_header_field,
                "on_header_value": self._on_header_value,
                "on_header_end": self._on_header_end,
                "on_headers_finished": self._on_headers_finished,
                "on_part_data": self._on_part_data,
                "on_part_end": self._on_part_end,
            },
        )

    # -- parser callbacks ---------------------------------------------------

    def _on_part_begin(self) -> None:
        self._part_headers = {}

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_name += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        self._part_headers[bytes(self._header_name).lower()] = bytes(self._header_value)
        self._header_name.clear()
        self._header_value.clear()

    def _on_headers_finished(self) -> None:
        _, options = parse_options_header(self._part_headers.get(b"content-disposition", b""))
        name = options.get(b"name", b"").decode("utf-8", errors="replace")
        raw_filename = options.get(b"filename")
        filename = None if raw_filename is None else raw_filename.decode("utf-8", errors="replace")
        content_type = self._part_headers.get(b"content-type", b"").decode("latin-1")
        self._events.append((_HEADERS, (name, filename, content_type)))

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        self._events.append((_DATA, bytes(data[start:end])))

    def _on_part_end(self) -> None:
        self._events.append((_END, None))

    # -- pulling -----------------------------------------------------------

    async def _next_event(self) -> tuple[str, object] | None:
        """Return the next part event, feeding the parser as needed; None at end of body."""
        while not self._events:
            if self._body_done:
                return None
            try:
                piece = await self._body.__anext__()
            except StopAsyncIteration:
                self._body_done = True
                piece = None
            try:
                if piece is None:
                    self._parser.finalize()
                else:
                    self._parser.write(piece)
            except MultipartParseError as exc:
                raise InvalidUploadRequest(f"Malformed multipart body: {exc}") from exc
        return self._events.popleft()

    async def _part_data(self) -> AsyncIterator[bytes]:
        while True:
            event = await self._next_event()
            if event is None:
                raise InvalidUploadRequest("The form body ended inside a part.")
            kind, value = event
            if kind == _END:
                return
            yield value

    async def _read_field(self) -> str:
        buf = bytearray()
        async for piece in self._part_data():
            buf += piece
            if len(buf) > MAX_FIELD_SIZE:
                raise InvalidUploadRequest("A form text field exceeds the size limit.")
        return buf.decode("utf-8", errors="replace")

    async def next_file(self) -> FormFile | None:
        """Advance to the next file part, collecting text fields on the way.

        Any unread remainder of the previous file part is discarded.

        Returns:
            The next FormFile, or None once the body is exhausted.
        """
        while True:
            event = await self._next_event()
            if event is None:
                return None
            kind, value = event
            if kind != _HEADERS:
                continue
            name, filename, content_type = value
            if filename is None:
                self.fields[name] = await self._read_field()
                continue
            logger.debug("Form file part %s (%s)", name, filename)
            return FormFile(
                field_name=name,
                filename=filename,
                content_type=content_type,
                stream=AsyncIteratorSource(self._part_data()),
            )

    async def __aiter__(self) -> AsyncIterator[FormFile]:
        while True:
            part = await self.next_file()
            if part is None:
                return
            yield part
