"""Retrieval and lifecycle of stored files: list, download, delete, usage.

Two listing modes are supported:

- ``ledger``: the stored_files table is the index; the filesystem holds bytes.
- ``filesystem``: the storage root itself is the index, every visible regular
  file is a stored file. Ledger records are still cleaned up on delete.

Delete order is fixed: bytes first, then the ledger record. A failure between
the two leaves a record without bytes, which downloads report as 404 and
``reconcile()`` reports for cleanup. Bytes without a record never happen
through this path.
"""
import asyncio
import logging
import mimetypes
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Optional

import aiofiles
import aiofiles.os

from mediavault.config import settings
from mediavault.errors import ConsistencyError, NotFoundError, StorageError, ValidationError
from mediavault.models.stored_file import StoredFile
from mediavault.services.ledger import MetadataLedger
from mediavault.services.storage import StorageRoot

logger = logging.getLogger(__name__)

LISTING_MODE_LEDGER = "ledger"
LISTING_MODE_FILESYSTEM = "filesystem"
LISTING_MODES = (LISTING_MODE_LEDGER, LISTING_MODE_FILESYSTEM)


@dataclass
class FileEntry:
    filename: str
    size: int
    uploaded_at: datetime
    id: Optional[str] = None
    original_name: Optional[str] = None
    mime_type: Optional[str] = None
    status: Optional[str] = None


@dataclass
class ResolvedFile:
    path: Path
    download_name: str
    mime_type: str
    record: Optional[StoredFile] = None


@dataclass
class Usage:
    used: int
    limit: int
    remaining: int


@dataclass
class Reconciliation:
    missing_bytes: list[str] = field(default_factory=list)
    unindexed_files: list[str] = field(default_factory=list)


def check_identifier(identifier: str) -> str:
    """Reject traversal attempts on the raw string, before any filesystem access."""
    if (
        not identifier
        or ".." in identifier
        or "/" in identifier
        or "\\" in identifier
        or "\x00" in identifier
        or identifier.startswith(".")
    ):
        raise ValidationError("Invalid filename")
    return identifier


def _entry_from_record(record: StoredFile) -> FileEntry:
    return FileEntry(
        filename=record.stored_name,
        size=record.size_bytes,
        uploaded_at=record.created_at,
        id=str(record.id),
        original_name=record.original_name,
        mime_type=record.mime_type,
        status=record.status,
    )


def scan_root(root: StorageRoot) -> list[FileEntry]:
    """Visible regular files in the root, newest first."""
    entries = []
    with os.scandir(root.path) as it:
        for dirent in it:
            if dirent.name.startswith("."):
                continue
            try:
                if not dirent.is_file(follow_symlinks=False):
                    continue
                stat = dirent.stat(follow_symlinks=False)
            except FileNotFoundError:
                # Deleted between scandir and stat
                continue
            entries.append(FileEntry(
                filename=dirent.name,
                size=stat.st_size,
                uploaded_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            ))
    entries.sort(key=lambda e: e.filename)
    entries.sort(key=lambda e: e.uploaded_at, reverse=True)
    return entries


async def _iter_file(handle, chunk_size: int) -> AsyncIterator[bytes]:
    try:
        while True:
            chunk = await handle.read(chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        await handle.close()


class LifecycleManager:
    """Read, delete and account for files under one storage root."""

    def __init__(self, root: StorageRoot, ledger: MetadataLedger, mode: Optional[str] = None):
        mode = mode or settings.LISTING_MODE
        if mode not in LISTING_MODES:
            raise ValueError(f"Unknown listing mode: {mode}")
        self.root = root
        self.ledger = ledger
        self.mode = mode

    async def list_files(self) -> list[FileEntry]:
        if self.mode == LISTING_MODE_FILESYSTEM:
            return await asyncio.to_thread(scan_root, self.root)
        return [_entry_from_record(r) for r in await self.ledger.list()]

    async def _lookup(self, identifier: str) -> Optional[StoredFile]:
        if self.mode == LISTING_MODE_LEDGER:
            return await self.ledger.find(identifier)
        return await self.ledger.get_by_stored_name(identifier)

    async def resolve_for_download(self, identifier: str) -> ResolvedFile:
        check_identifier(identifier)
        record = await self._lookup(identifier)

        if record is not None:
            path = self.root.path / record.stored_name
            download_name = record.original_name
            mime_type = record.mime_type
        elif self.mode == LISTING_MODE_FILESYSTEM:
            path = self.root.path / identifier
            download_name = identifier
            mime_type = mimetypes.guess_type(identifier)[0] or "application/octet-stream"
        else:
            raise NotFoundError("Not found")

        if not await aiofiles.os.path.isfile(path):
            raise NotFoundError("Not found")
        return ResolvedFile(path=path, download_name=download_name, mime_type=mime_type, record=record)

    async def open_for_download(self, resolved: ResolvedFile) -> tuple[int, AsyncIterator[bytes]]:
        """Open the bytes before any response is sent.

        Once open, a concurrent delete can't truncate the download; if the
        delete wins the race the caller gets NotFoundError instead.
        """
        try:
            handle = await aiofiles.open(resolved.path, "rb")
        except FileNotFoundError as e:
            raise NotFoundError("Not found") from e
        size = os.fstat(handle.fileno()).st_size
        return size, _iter_file(handle, settings.UPLOAD_CHUNK_SIZE)

    async def delete(self, identifier: str) -> str:
        """Remove bytes, then the ledger record. Returns the stored name removed."""
        check_identifier(identifier)
        record = await self._lookup(identifier)
        stored_name = record.stored_name if record is not None else identifier

        try:
            await aiofiles.os.remove(self.root.path / stored_name)
            bytes_removed = True
        except FileNotFoundError:
            bytes_removed = False
        except OSError as e:
            logger.error("Failed deleting %s", stored_name, exc_info=True)
            raise StorageError(str(e)) from e

        if record is None:
            if not bytes_removed:
                raise NotFoundError("Not found")
            logger.info("Deleted %s", stored_name)
            return stored_name

        try:
            await self.ledger.delete(record)
        except StorageError as e:
            # Space is already reclaimed; report success and leave a trail
            problem = ConsistencyError(f"bytes removed but ledger record {record.id} kept: {e.message}")
            logger.error("Needs reconciliation: %s (%s)", stored_name, problem.message)
        else:
            if not bytes_removed:
                logger.warning("Ledger record %s had no bytes on disk", stored_name)
        logger.info("Deleted %s", stored_name)
        return stored_name

    async def usage_summary(self, limit: Optional[int] = None) -> Usage:
        """Point-in-time usage estimate against the aggregate ceiling."""
        limit = settings.USAGE_LIMIT if limit is None else limit
        if self.mode == LISTING_MODE_FILESYSTEM:
            used = sum(e.size for e in await asyncio.to_thread(scan_root, self.root))
        else:
            used = await self.ledger.total_size()
        return Usage(used=used, limit=limit, remaining=max(0, limit - used))

    async def set_status(self, identifier: str, status: str) -> StoredFile:
        check_identifier(identifier)
        record = await self._lookup(identifier)
        if record is None:
            raise NotFoundError("Not found")
        return await self.ledger.set_status(record, status)

    async def reconcile(self) -> Reconciliation:
        """Compare ledger and storage root. Read-only."""
        on_disk = {e.filename for e in await asyncio.to_thread(scan_root, self.root)}
        indexed = {r.stored_name for r in await self.ledger.list()}
        report = Reconciliation(
            missing_bytes=sorted(indexed - on_disk),
            unindexed_files=sorted(on_disk - indexed),
        )
        if report.missing_bytes or report.unindexed_files:
            logger.warning(
                "Reconcile: %d record(s) without bytes, %d file(s) without record",
                len(report.missing_bytes), len(report.unindexed_files),
            )
        return report
