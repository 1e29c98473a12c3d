"""Upload policies and the checks that enforce them.

Type checks run before a single byte is written. Size checks run before every
chunk is written, so an oversized upload stops at the chunk that crosses the ceiling.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from mediavault.config import settings
from mediavault.errors import ValidationError
from mediavault.services.naming import SCHEME_TIMESTAMP, SCHEME_UUID

logger = logging.getLogger(__name__)

EVENT_VIDEO_TYPES = frozenset({
    "video/mp4",
    "video/quicktime",
    "video/webm",
    "video/x-m4v",
    "video/mov",
})


@dataclass(frozen=True)
class UploadPolicy:
    name: str
    max_bytes: int
    rejection_message: str
    allowed_prefixes: tuple[str, ...] = ()
    allowed_types: frozenset[str] = field(default_factory=frozenset)
    naming_scheme: str = SCHEME_TIMESTAMP
    max_files: int = 1

    def allows(self, mime_type: Optional[str]) -> bool:
        if not mime_type:
            return False
        mime_type = mime_type.split(";", 1)[0].strip().lower()
        if mime_type in self.allowed_types:
            return True
        return any(mime_type.startswith(prefix) for prefix in self.allowed_prefixes)


@dataclass(frozen=True)
class Decision:
    accepted: bool
    reason: str = ""


def single_upload_policy() -> UploadPolicy:
    return UploadPolicy(
        name="single",
        max_bytes=settings.MAX_UPLOAD_SIZE,
        rejection_message="Only video files are allowed.",
        allowed_prefixes=("video/",),
    )


def batch_upload_policy() -> UploadPolicy:
    return UploadPolicy(
        name="batch",
        max_bytes=settings.MAX_BATCH_FILE_SIZE,
        rejection_message="Only video and image files are allowed.",
        allowed_prefixes=("video/", "image/"),
        max_files=settings.MAX_BATCH_FILES,
    )


def event_video_policy() -> UploadPolicy:
    return UploadPolicy(
        name="event_video",
        max_bytes=settings.EVENT_VIDEO_MAX_SIZE,
        rejection_message="Unsupported file type. Allowed: MP4, MOV, WebM, M4V",
        allowed_types=EVENT_VIDEO_TYPES,
        naming_scheme=SCHEME_UUID,
    )


def effective_ceiling(policy: UploadPolicy, remaining: Optional[int] = None) -> int:
    """Per-file ceiling, tightened to what is left of the aggregate usage limit."""
    if remaining is None:
        return policy.max_bytes
    return min(policy.max_bytes, max(remaining, 0))


def check_type(declared_mime: Optional[str], policy: UploadPolicy) -> None:
    if not policy.allows(declared_mime):
        logger.warning(
            "Rejected %s upload with declared type %r", policy.name, declared_mime
        )
        raise ValidationError(policy.rejection_message)


def check_size(size_so_far: int, policy: UploadPolicy, ceiling: Optional[int] = None) -> None:
    """Policy limit first, then the quota ceiling."""
    if size_so_far > policy.max_bytes:
        raise ValidationError(f"File too large (limit {policy.max_bytes} bytes)")
    if ceiling is not None and size_so_far > ceiling:
        raise ValidationError("Upload quota exceeded")


def check_count(count: int, policy: UploadPolicy) -> None:
    if count == 0:
        raise ValidationError("No files uploaded")
    if count > policy.max_files:
        raise ValidationError(f"Too many files (limit {policy.max_files})")


def validate(
    declared_mime: Optional[str],
    size_so_far: int,
    policy: UploadPolicy,
    ceiling: Optional[int] = None,
) -> Decision:
    """Non-raising form of check_type + check_size."""
    try:
        check_type(declared_mime, policy)
        check_size(size_so_far, policy, ceiling)
    except ValidationError as e:
        return Decision(accepted=False, reason=e.message)
    return Decision(accepted=True)
