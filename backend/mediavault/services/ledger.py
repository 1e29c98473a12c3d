"""Metadata ledger - the authoritative index of stored files."""
import logging
import uuid
from typing import Optional

from sqlalchemy import select, desc, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mediavault.errors import NotFoundError, StorageError, ValidationError
from mediavault.models.stored_file import StoredFile, STATUSES

logger = logging.getLogger(__name__)


def _parse_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(value)
    except (ValueError, AttributeError, TypeError):
        return None


class MetadataLedger:
    """CRUD over the stored_files table, bound to one session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, record: StoredFile, commit: bool = True) -> StoredFile:
        """Insert a record. stored_name must not already be indexed."""
        if await self.get_by_stored_name(record.stored_name) is not None:
            raise StorageError(f"Stored name already indexed: {record.stored_name}")
        self.db.add(record)
        if commit:
            await self.commit()
            await self.db.refresh(record)
        return record

    async def commit(self) -> None:
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise StorageError(f"Ledger uniqueness violation: {e.orig}") from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError(f"Ledger write failed: {e}") from e

    async def get(self, file_id: uuid.UUID) -> StoredFile:
        record = await self.db.get(StoredFile, file_id)
        if record is None:
            raise NotFoundError("Not found")
        return record

    async def get_by_stored_name(self, stored_name: str) -> Optional[StoredFile]:
        result = await self.db.execute(
            select(StoredFile).where(StoredFile.stored_name == stored_name)
        )
        return result.scalar_one_or_none()

    async def find(self, identifier: str) -> Optional[StoredFile]:
        """Look up by ledger id (UUID string) first, then by stored name."""
        file_id = _parse_uuid(identifier)
        if file_id is not None:
            record = await self.db.get(StoredFile, file_id)
            if record is not None:
                return record
        return await self.get_by_stored_name(identifier)

    async def list(self, limit: Optional[int] = None, offset: int = 0) -> list[StoredFile]:
        """Newest first. stored_name breaks ties so the order is deterministic."""
        query = (
            select(StoredFile)
            .order_by(desc(StoredFile.created_at), StoredFile.stored_name)
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def delete(self, record: StoredFile) -> None:
        await self.db.delete(record)
        await self.commit()

    async def total_size(self) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(StoredFile.size_bytes), 0))
        )
        return int(result.scalar_one())

    async def set_status(self, record: StoredFile, status: str) -> StoredFile:
        if status not in STATUSES:
            raise ValidationError(f"Unknown status '{status}'")
        record.status = status
        await self.commit()
        await self.db.refresh(record)
        logger.info("Status of %s set to %s", record.stored_name, status)
        return record
