"""Storage root handle and the streaming writer.

Bytes are pushed chunk by chunk into a hidden ``.part`` file inside the root
and renamed into place only once the whole stream has passed validation. Any
failure removes the ``.part`` file before the error leaves this module, so an
aborted upload never shows up under a stable name.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

import aiofiles
import aiofiles.os

from mediavault.config import settings
from mediavault.errors import StorageError, ValidationError
from mediavault.models.stored_file import StoredFile, STATUS_APPROVED
from mediavault.services.intake import (
    UploadPolicy,
    check_count,
    check_size,
    check_type,
    effective_ceiling,
)
from mediavault.services.ledger import MetadataLedger
from mediavault.services.naming import derive_stored_name, is_safe_name

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".part"


class UploadStream(Protocol):
    """What the writer needs from an upload. FastAPI's UploadFile satisfies it."""
    filename: Optional[str]
    content_type: Optional[str]

    async def read(self, size: int = -1) -> bytes: ...


class StorageRoot:
    """The directory every stored file lives in. Passed explicitly, never global."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser().resolve()
        self.path.mkdir(parents=True, exist_ok=True)

    def path_for(self, stored_name: str) -> Path:
        if not is_safe_name(stored_name):
            raise ValidationError("Invalid filename")
        return self.path / stored_name

    def temp_path_for(self, stored_name: str) -> Path:
        # Leading dot hides in-flight writes from filesystem listings
        return self.path / f".{stored_name}{TEMP_SUFFIX}"

    def __repr__(self) -> str:
        return f"StorageRoot({str(self.path)!r})"


@dataclass
class WrittenFile:
    stored_name: str
    original_name: str
    mime_type: str
    size_bytes: int


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.error("Could not remove %s", path, exc_info=True)


class PendingWrite:
    """One upload in flight.

    ``write`` checks the running size against the ceiling before each chunk
    lands on disk. ``commit`` renames the temp file into place; ``abort``
    removes it and is a no-op once committed.
    """

    def __init__(
        self,
        root: StorageRoot,
        stored_name: str,
        original_name: str,
        mime_type: str,
        policy: UploadPolicy,
        ceiling: Optional[int] = None,
    ):
        self.root = root
        self.stored_name = stored_name
        self.original_name = original_name
        self.mime_type = mime_type
        self.policy = policy
        self.ceiling = ceiling
        self.written = 0
        self.committed = False
        self._target = root.path_for(stored_name)
        self._temp = root.temp_path_for(stored_name)
        self._handle = None

    async def _open(self) -> None:
        try:
            self._handle = await aiofiles.open(self._temp, "xb")
        except OSError as e:
            logger.error("Could not create %s", self._temp, exc_info=True)
            raise StorageError(str(e)) from e

    async def write(self, chunk: bytes) -> None:
        try:
            check_size(self.written + len(chunk), self.policy, self.ceiling)
        except ValidationError:
            logger.warning(
                "Aborted %s upload of %r after %d bytes",
                self.policy.name, self.original_name, self.written,
            )
            raise
        try:
            await self._handle.write(chunk)
        except OSError as e:
            logger.error("Failed writing %s", self.stored_name, exc_info=True)
            raise StorageError(str(e)) from e
        self.written += len(chunk)

    async def commit(self) -> WrittenFile:
        try:
            await self._handle.close()
            if await aiofiles.os.path.exists(self._target):
                raise StorageError(f"Refusing to overwrite {self.stored_name}")
            await aiofiles.os.replace(self._temp, self._target)
            self.committed = True
            size_bytes = (await aiofiles.os.stat(self._target)).st_size
        except OSError as e:
            logger.error("Failed committing %s", self.stored_name, exc_info=True)
            raise StorageError(str(e)) from e
        finally:
            if not self.committed:
                _remove_quietly(self._temp)

        logger.info("Stored %r as %s (%d bytes)", self.original_name, self.stored_name, size_bytes)
        return WrittenFile(
            stored_name=self.stored_name,
            original_name=self.original_name,
            mime_type=self.mime_type,
            size_bytes=size_bytes,
        )

    async def abort(self) -> None:
        if self.committed:
            return
        # Unlink first: it must happen even if the close below is cancelled
        _remove_quietly(self._temp)
        if self._handle is not None:
            try:
                await self._handle.close()
            except OSError:
                logger.error("Could not close %s", self._temp, exc_info=True)


class StorageWriter:
    """Streams uploads into a StorageRoot."""

    def __init__(self, root: StorageRoot, chunk_size: Optional[int] = None):
        self.root = root
        self.chunk_size = chunk_size or settings.UPLOAD_CHUNK_SIZE

    async def open(
        self,
        original_name: Optional[str],
        mime_type: Optional[str],
        policy: UploadPolicy,
        ceiling: Optional[int] = None,
    ) -> PendingWrite:
        """Check the declared type, pick a stored name and create the temp file.

        Raises ValidationError on a disallowed type before anything touches disk.
        """
        original_name = original_name or "unnamed"
        check_type(mime_type, policy)
        stored_name = derive_stored_name(original_name, policy.naming_scheme)
        pending = PendingWrite(self.root, stored_name, original_name, mime_type, policy, ceiling)
        await pending._open()
        return pending

    async def store(
        self,
        upload: UploadStream,
        policy: UploadPolicy,
        ceiling: Optional[int] = None,
    ) -> WrittenFile:
        """Validate and write one upload pulled from ``upload.read``.

        Raises ValidationError on a disallowed type or oversized stream and
        StorageError on I/O failure. No partial file survives either.
        """
        pending = await self.open(upload.filename, upload.content_type, policy, ceiling)
        try:
            while True:
                try:
                    chunk = await upload.read(self.chunk_size)
                except OSError as e:
                    logger.error("Reading %r failed after %d bytes", pending.original_name, pending.written)
                    raise StorageError(str(e)) from e
                if not chunk:
                    break
                await pending.write(chunk)
            return await pending.commit()
        finally:
            await pending.abort()

    def discard(self, stored_name: str) -> None:
        """Remove committed bytes, e.g. when the ledger insert that follows fails."""
        _remove_quietly(self.root.path_for(stored_name))
        logger.warning("Discarded %s", stored_name)


def _record_for(written: WrittenFile, source: str, **fields) -> StoredFile:
    return StoredFile(
        original_name=written.original_name,
        stored_name=written.stored_name,
        mime_type=written.mime_type,
        size_bytes=written.size_bytes,
        source=source,
        status=fields.pop("status", STATUS_APPROVED),
        created_at=datetime.now(timezone.utc),
        **fields,
    )


async def index_files(
    writer: StorageWriter,
    ledger: MetadataLedger,
    written: list[WrittenFile],
    source: str,
    **fields,
) -> list[StoredFile]:
    """Insert one ledger record per written file in a single commit.

    Until that commit succeeds any failure, cancellation included, removes
    every file in ``written``. After it, the bytes are indexed and stay.
    """
    try:
        records = [_record_for(w, source, **fields) for w in written]
        for record in records:
            await ledger.create(record, commit=False)
        await ledger.commit()
    except BaseException:
        for w in written:
            writer.discard(w.stored_name)
        raise

    for record in records:
        await ledger.db.refresh(record)
    return records


async def store_upload(
    writer: StorageWriter,
    ledger: MetadataLedger,
    upload: UploadStream,
    policy: UploadPolicy,
    ceiling: Optional[int] = None,
    source: str = "upload",
    **fields,
) -> StoredFile:
    """Write bytes, then index them. If indexing fails the bytes are removed."""
    written = await writer.store(upload, policy, ceiling)
    [record] = await index_files(writer, ledger, [written], source, **fields)
    return record


async def store_batch(
    writer: StorageWriter,
    ledger: MetadataLedger,
    uploads: list[UploadStream],
    policy: UploadPolicy,
    ceiling: Optional[int] = None,
    source: str = "batch",
) -> list[StoredFile]:
    """All-or-nothing batch upload.

    Every declared type is checked before anything is written. The ceiling
    applies to the batch total; each file also respects the policy's own limit.
    """
    check_count(len(uploads), policy)
    for upload in uploads:
        check_type(upload.content_type, policy)

    written: list[WrittenFile] = []
    try:
        for upload in uploads:
            remaining = None if ceiling is None else ceiling - sum(w.size_bytes for w in written)
            written.append(await writer.store(upload, policy, effective_ceiling(policy, remaining)))
    except BaseException:
        for w in written:
            writer.discard(w.stored_name)
        raise
    return await index_files(writer, ledger, written, source)
