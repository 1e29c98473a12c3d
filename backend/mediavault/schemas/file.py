"""Stored file request/response schemas."""
from typing import Literal, Optional
from datetime import datetime
from mediavault.schemas.base import CamelModel, CamelORMModel


class StoredFileSummary(CamelORMModel):
    """What an uploader gets back for each accepted file."""
    id: str
    filename: str
    original_name: str
    size: int
    mime_type: str
    status: str

    @classmethod
    def from_record(cls, record) -> "StoredFileSummary":
        return cls(
            id=str(record.id),
            filename=record.stored_name,
            original_name=record.original_name,
            size=record.size_bytes,
            mime_type=record.mime_type,
            status=record.status,
        )


class UploadResponse(CamelModel):
    message: str = "Upload successful"
    file: StoredFileSummary


class BatchUploadResponse(CamelModel):
    message: str = "Upload successful"
    files: list[StoredFileSummary]


class BatchUploadInfo(CamelModel):
    message: str = "Upload route is live. Use POST to upload files."
    endpoint: str = "/api/upload/multiple"
    method: str = "POST"
    max_files: int
    max_file_size: int
    accepted_types: str = "video/* and image/*"


class EventVideoResponse(CamelModel):
    ok: bool = True
    id: str
    filename: str


class FileEntryResponse(CamelORMModel):
    filename: str
    size: int
    uploaded_at: datetime
    id: Optional[str] = None
    original_name: Optional[str] = None
    mime_type: Optional[str] = None
    status: Optional[str] = None


class DeleteFileResponse(CamelModel):
    message: str = "Deleted"
    filename: str


class StatusUpdate(CamelModel):
    status: Literal["pending", "approved"]


class ReconcileResponse(CamelORMModel):
    missing_bytes: list[str] = []
    unindexed_files: list[str] = []


class UsageResponse(CamelORMModel):
    used: int
    limit: int
    remaining: int


def multipart_body(files: dict[str, bool], fields: Optional[list[str]] = None) -> dict:
    """OpenAPI request body for routes that parse their own multipart stream.

    ``files`` maps each file field to whether it may repeat.
    """
    properties = {}
    for name, repeated in files.items():
        binary = {"type": "string", "format": "binary"}
        properties[name] = {"type": "array", "items": binary} if repeated else binary
    for name in fields or []:
        properties[name] = {"type": "string"}
    return {
        "requestBody": {
            "required": True,
            "content": {
                "multipart/form-data": {
                    "schema": {"type": "object", "properties": properties},
                },
            },
        },
    }
