"""Public upload routes.

Handlers read the body through FormReceiver rather than ``UploadFile``
parameters, so limits apply while the request is still streaming in.
"""
from fastapi import APIRouter, Depends, Request

from mediavault.config import settings
from mediavault.dependencies import get_ledger, get_lifecycle, get_writer
from mediavault.errors import ValidationError
from mediavault.schemas.common import ErrorResponse
from mediavault.schemas.file import (
    BatchUploadInfo,
    BatchUploadResponse,
    StoredFileSummary,
    UploadResponse,
    multipart_body,
)
from mediavault.services.intake import batch_upload_policy, check_count, single_upload_policy
from mediavault.services.ledger import MetadataLedger
from mediavault.services.lifecycle import LifecycleManager
from mediavault.services.receiver import FormReceiver, check_content_length
from mediavault.services.storage import StorageWriter, index_files

router = APIRouter(prefix="/api/upload", tags=["uploads"])

_ERRORS = {400: {"model": ErrorResponse}}


@router.post(
    "",
    response_model=UploadResponse,
    status_code=201,
    responses=_ERRORS,
    openapi_extra=multipart_body(files={"video": False}),
)
async def upload_video(
    request: Request,
    writer: StorageWriter = Depends(get_writer),
    ledger: MetadataLedger = Depends(get_ledger),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    """Upload a single video (form field ``video``)."""
    policy = single_upload_policy()
    check_content_length(request.headers, policy)
    usage = await lifecycle.usage_summary()
    receiver = FormReceiver(writer, policy, "video", ceiling=usage.remaining)
    form = await receiver.receive(request.headers, request.stream())
    if not form.files:
        raise ValidationError("No file uploaded")

    [record] = await index_files(writer, ledger, form.files, source="upload")
    return UploadResponse(file=StoredFileSummary.from_record(record))


@router.get("/multiple", response_model=BatchUploadInfo)
async def batch_upload_info():
    """Describe the batch upload route."""
    return BatchUploadInfo(
        max_files=settings.MAX_BATCH_FILES,
        max_file_size=settings.MAX_BATCH_FILE_SIZE,
    )


@router.post(
    "/multiple",
    response_model=BatchUploadResponse,
    status_code=201,
    responses=_ERRORS,
    openapi_extra=multipart_body(files={"files": True}),
)
async def upload_multiple(
    request: Request,
    writer: StorageWriter = Depends(get_writer),
    ledger: MetadataLedger = Depends(get_ledger),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    """Upload several videos or images (form field ``files``). All or nothing."""
    policy = batch_upload_policy()
    check_content_length(request.headers, policy)
    usage = await lifecycle.usage_summary()
    receiver = FormReceiver(writer, policy, "files", ceiling=usage.remaining)
    form = await receiver.receive(request.headers, request.stream())
    check_count(len(form.files), policy)

    records = await index_files(writer, ledger, form.files, source="batch")
    return BatchUploadResponse(files=[StoredFileSummary.from_record(r) for r in records])
