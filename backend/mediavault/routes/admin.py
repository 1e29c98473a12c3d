"""Admin routes - list, download, delete and approve stored files.

Every route here sits behind ``require_admin``, which runs before any lookup,
so a caller without the key can't learn whether a file exists.
"""
from urllib.parse import quote
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from mediavault.dependencies import get_lifecycle, require_admin
from mediavault.schemas.common import ErrorResponse
from mediavault.schemas.file import (
    DeleteFileResponse,
    FileEntryResponse,
    ReconcileResponse,
    StatusUpdate,
    StoredFileSummary,
)
from mediavault.services.lifecycle import LifecycleManager

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
    responses={401: {"model": ErrorResponse}},
)


def _content_disposition(filename: str) -> str:
    """Same header FileResponse builds; downloads use StreamingResponse over a handle opened before the response starts."""
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


@router.get("/files", response_model=list[FileEntryResponse])
async def list_files(lifecycle: LifecycleManager = Depends(get_lifecycle)):
    """List stored files, newest first."""
    return [FileEntryResponse.model_validate(e) for e in await lifecycle.list_files()]


@router.get("/download/{name:path}", responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}})
async def download_file(name: str, lifecycle: LifecycleManager = Depends(get_lifecycle)):
    """Stream a stored file as an attachment. ``name`` is a stored name or ledger id."""
    resolved = await lifecycle.resolve_for_download(name)
    size, body = await lifecycle.open_for_download(resolved)
    return StreamingResponse(
        body,
        media_type=resolved.mime_type,
        headers={
            "content-disposition": _content_disposition(resolved.download_name),
            "content-length": str(size),
        },
    )


@router.delete("/files/{name:path}", response_model=DeleteFileResponse, responses={404: {"model": ErrorResponse}})
async def delete_file(name: str, lifecycle: LifecycleManager = Depends(get_lifecycle)):
    """Delete a stored file's bytes and its ledger record."""
    stored_name = await lifecycle.delete(name)
    return DeleteFileResponse(filename=stored_name)


@router.patch("/files/{name}/status", response_model=StoredFileSummary, responses={404: {"model": ErrorResponse}})
async def update_status(
    name: str,
    body: StatusUpdate,
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    """Move a file between pending and approved."""
    record = await lifecycle.set_status(name, body.status)
    return StoredFileSummary.from_record(record)


@router.get("/reconcile", response_model=ReconcileResponse)
async def reconcile(lifecycle: LifecycleManager = Depends(get_lifecycle)):
    """Report ledger records without bytes and files without records."""
    return ReconcileResponse.model_validate(await lifecycle.reconcile())
