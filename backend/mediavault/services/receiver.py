"""Streaming form intake.

Upload routes read the request body themselves instead of letting the
framework spool the whole form first. Each network chunk goes through
python-multipart's push parser and file bytes go straight into a
``PendingWrite``, so type, count and size checks run while the body is still
arriving. A rejection stops reading at that chunk.

Parser callbacks are synchronous. They only queue events, and ``_drain``
replays them with the async writer after every ``parser.write``.
"""
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Mapping, Optional
from urllib.parse import unquote_plus

from python_multipart.exceptions import FormParserError
from python_multipart.multipart import MultipartParser, QuerystringParser, parse_options_header

from mediavault.config import MB
from mediavault.errors import ValidationError
from mediavault.services.intake import UploadPolicy, check_count, effective_ceiling
from mediavault.services.storage import PendingWrite, StorageWriter, WrittenFile

logger = logging.getLogger(__name__)

MULTIPART = b"multipart/form-data"
URLENCODED = b"application/x-www-form-urlencoded"

# Headers, boundaries and text fields on top of the file bytes themselves
FORM_OVERHEAD = 1 * MB
MAX_FIELD_SIZE = 64 * 1024

_PART, _DATA, _END, _FIELD = "part", "data", "end", "field"


@dataclass
class ReceivedForm:
    fields: dict[str, str] = field(default_factory=dict)
    files: list[WrittenFile] = field(default_factory=list)


def body_limit(policy: UploadPolicy) -> int:
    """Largest request body a policy can legitimately produce."""
    return policy.max_bytes * policy.max_files + FORM_OVERHEAD


def check_content_length(headers: Mapping[str, str], policy: UploadPolicy) -> None:
    """Reject a declared body size over the limit before reading any of it."""
    raw = headers.get("content-length")
    if raw is None:
        return
    try:
        length = int(raw)
    except ValueError:
        raise ValidationError("Invalid Content-Length")
    limit = body_limit(policy)
    if length > limit:
        logger.warning("Rejected %s upload declaring %d bytes", policy.name, length)
        raise ValidationError(f"Request too large (limit {limit} bytes)")


class _TextField:
    def __init__(self, name: str):
        self.name = name
        self.value = bytearray()

    def extend(self, data: bytes) -> None:
        if len(self.value) + len(data) > MAX_FIELD_SIZE:
            raise ValidationError(f"Form field {self.name!r} too large")
        self.value.extend(data)


class _Skipped:
    """File part under a field name this route doesn't take."""


class FormReceiver:
    """Receive one form, writing the file parts named ``file_field``.

    ``ceiling`` caps the combined size of every file in the form (usage
    quota); each file is also held to ``policy.max_bytes``. If anything fails
    before ``receive`` returns, every file it wrote is removed.
    """

    def __init__(
        self,
        writer: StorageWriter,
        policy: UploadPolicy,
        file_field: str,
        ceiling: Optional[int] = None,
    ):
        self.writer = writer
        self.policy = policy
        self.file_field = file_field
        self.ceiling = ceiling
        self._events: list[tuple[str, object]] = []
        self._header_field = b""
        self._header_value = b""
        self._headers: dict[bytes, bytes] = {}
        self._part = None
        self._file_count = 0

    # Multipart callbacks

    def _on_part_begin(self) -> None:
        self._headers = {}

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        self._headers[self._header_field.lower()] = self._header_value
        self._header_field = b""
        self._header_value = b""

    def _on_headers_finished(self) -> None:
        self._events.append((_PART, self._headers))

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        self._events.append((_DATA, data[start:end]))

    def _on_part_end(self) -> None:
        self._events.append((_END, None))

    # Urlencoded callbacks; a form without a file input arrives this way

    def _on_field_start(self) -> None:
        self._part = _TextField("")
        self._header_field = b""

    def _on_field_name(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def _on_field_data(self, data: bytes, start: int, end: int) -> None:
        self._part.extend(data[start:end])

    def _on_field_end(self) -> None:
        self._events.append((_FIELD, (self._header_field, bytes(self._part.value))))
        self._part = None

    def _parser(self, content_type: Optional[str]):
        ctype, params = parse_options_header(content_type or "")
        if ctype == MULTIPART and params.get(b"boundary"):
            return MultipartParser(
                params[b"boundary"],
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
        if ctype == URLENCODED:
            return QuerystringParser(
                callbacks={
                    "on_field_start": self._on_field_start,
                    "on_field_name": self._on_field_name,
                    "on_field_data": self._on_field_data,
                    "on_field_end": self._on_field_end,
                },
            )
        raise ValidationError("Expected multipart/form-data")

    # Event replay

    async def _begin_part(self, headers: dict[bytes, bytes], form: ReceivedForm) -> None:
        _, params = parse_options_header(headers.get(b"content-disposition", b""))
        name = params.get(b"name", b"").decode("utf-8", "replace")
        filename = params.get(b"filename")

        if filename is None:
            self._part = _TextField(name)
            return
        if name != self.file_field or not filename:
            # Browsers send an empty filename for an unused file input
            self._part = _Skipped()
            return

        self._file_count += 1
        check_count(self._file_count, self.policy)
        remaining = None
        if self.ceiling is not None:
            remaining = self.ceiling - sum(w.size_bytes for w in form.files)
        content_type = headers.get(b"content-type", b"").decode("latin-1").strip()
        self._part = await self.writer.open(
            filename.decode("utf-8", "replace"),
            content_type or None,
            self.policy,
            effective_ceiling(self.policy, remaining),
        )

    async def _part_data(self, data: bytes) -> None:
        part = self._part
        if isinstance(part, PendingWrite):
            await part.write(data)
        elif isinstance(part, _TextField):
            part.extend(data)

    async def _end_part(self, form: ReceivedForm) -> None:
        part, self._part = self._part, None
        if isinstance(part, PendingWrite):
            form.files.append(await part.commit())
        elif isinstance(part, _TextField):
            form.fields[part.name] = part.value.decode("utf-8", "replace")

    async def _drain(self, form: ReceivedForm) -> None:
        events, self._events = self._events, []
        for kind, payload in events:
            if kind == _PART:
                await self._begin_part(payload, form)
            elif kind == _DATA:
                await self._part_data(payload)
            elif kind == _FIELD:
                name, value = payload
                form.fields[unquote_plus(name.decode("latin-1"))] = unquote_plus(value.decode("latin-1"))
            else:
                await self._end_part(form)

    async def receive(
        self,
        headers: Mapping[str, str],
        stream: AsyncIterator[bytes],
    ) -> ReceivedForm:
        """Parse the body from ``stream``. Returns text fields and written files.

        Raises ValidationError for an oversized or malformed body, a
        disallowed type, or too many files. Stops reading the stream at the
        first such error.
        """
        check_content_length(headers, self.policy)
        parser = self._parser(headers.get("content-type"))
        limit = body_limit(self.policy)
        form = ReceivedForm()
        received = 0
        try:
            async for chunk in stream:
                received += len(chunk)
                if received > limit:
                    logger.warning("Stopped reading %s upload at %d bytes", self.policy.name, received)
                    raise ValidationError(f"Request too large (limit {limit} bytes)")
                try:
                    parser.write(chunk)
                except FormParserError as e:
                    raise ValidationError("Malformed form body") from e
                await self._drain(form)
            parser.finalize()
            await self._drain(form)
            if self._part is not None:
                # Body ended inside a part
                raise ValidationError("Malformed form body")
        except BaseException:
            if isinstance(self._part, PendingWrite):
                await self._part.abort()
            for w in form.files:
                self.writer.discard(w.stored_name)
            raise
        return form
