"""Event video intake.

Narrower container list and UUID stored names. Submissions land as
``pending`` until an admin approves them.
"""
from fastapi import APIRouter, Depends, Request

from mediavault.dependencies import get_ledger, get_lifecycle, get_writer
from mediavault.errors import ValidationError
from mediavault.models.stored_file import STATUS_PENDING
from mediavault.schemas.common import ErrorResponse
from mediavault.schemas.file import EventVideoResponse, multipart_body
from mediavault.services.intake import event_video_policy
from mediavault.services.ledger import MetadataLedger
from mediavault.services.lifecycle import LifecycleManager
from mediavault.services.receiver import FormReceiver, check_content_length
from mediavault.services.storage import StorageWriter, index_files

router = APIRouter(prefix="/api/event-videos", tags=["event-videos"])


def _clean(value, limit: int):
    return (value or "").strip()[:limit] or None


@router.post(
    "/upload",
    response_model=EventVideoResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}},
    openapi_extra=multipart_body(
        files={"video": False},
        fields=["eventName", "uploaderName", "uploaderEmail"],
    ),
)
async def upload_event_video(
    request: Request,
    writer: StorageWriter = Depends(get_writer),
    ledger: MetadataLedger = Depends(get_ledger),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    """Submit a video for an event."""
    policy = event_video_policy()
    check_content_length(request.headers, policy)
    usage = await lifecycle.usage_summary()
    receiver = FormReceiver(writer, policy, "video", ceiling=usage.remaining)
    form = await receiver.receive(request.headers, request.stream())

    event_name = _clean(form.fields.get("eventName"), 200)
    if event_name is None or not form.files:
        for written in form.files:
            writer.discard(written.stored_name)
        if event_name is None:
            raise ValidationError("eventName is required")
        raise ValidationError("video file is required")

    [record] = await index_files(
        writer, ledger, form.files,
        source="event_video",
        status=STATUS_PENDING,
        event_name=event_name,
        owner_label=_clean(form.fields.get("uploaderName"), 200),
        owner_contact=_clean(form.fields.get("uploaderEmail"), 320),
    )
    return EventVideoResponse(id=str(record.id), filename=record.stored_name)
