"""StoredFile model - ledger entry for bytes kept under the storage root."""
import uuid
from sqlalchemy import String, BigInteger, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from mediavault.models.base import Base, TimestampMixin

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUSES = (STATUS_PENDING, STATUS_APPROVED)


class StoredFile(Base, TimestampMixin):
    __tablename__ = "stored_files"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    original_name: Mapped[str] = mapped_column(String(500), nullable=False)
    stored_name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    source: Mapped[str] = mapped_column(String(20), default="upload")
    status: Mapped[str] = mapped_column(String(20), default=STATUS_APPROVED)

    # Event-video intake fields
    owner_label: Mapped[str | None] = mapped_column(String(200), nullable=True)
    owner_contact: Mapped[str | None] = mapped_column(String(320), nullable=True)
    event_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    __table_args__ = (
        Index("idx_stored_files_created_at", "created_at"),
    )
