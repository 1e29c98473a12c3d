"""FastAPI dependencies shared by the routers.

Tests swap the storage root with ``app.dependency_overrides[get_storage_root]``.
"""
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from mediavault.config import settings
from mediavault.database import get_db
from mediavault.errors import AuthorizationError
from mediavault.services.access import ADMIN_KEY_HEADER, authorize
from mediavault.services.ledger import MetadataLedger
from mediavault.services.lifecycle import LifecycleManager
from mediavault.services.storage import StorageRoot, StorageWriter


@lru_cache
def _default_root() -> StorageRoot:
    return StorageRoot(settings.UPLOAD_DIR)


def get_storage_root() -> StorageRoot:
    return _default_root()


def get_ledger(db: AsyncSession = Depends(get_db)) -> MetadataLedger:
    return MetadataLedger(db)


def get_writer(root: StorageRoot = Depends(get_storage_root)) -> StorageWriter:
    return StorageWriter(root)


def get_lifecycle(
    root: StorageRoot = Depends(get_storage_root),
    ledger: MetadataLedger = Depends(get_ledger),
) -> LifecycleManager:
    return LifecycleManager(root, ledger)


async def require_admin(
    x_admin_key: Optional[str] = Header(None, alias=ADMIN_KEY_HEADER),
) -> None:
    """Gate for privileged routes. Same 401 for a missing or a wrong key."""
    if not authorize(x_admin_key, settings.ADMIN_KEY):
        raise AuthorizationError()
