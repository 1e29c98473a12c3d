"""Import all models so SQLAlchemy metadata knows about them."""
from mediavault.models.base import Base
from mediavault.models.stored_file import StoredFile

__all__ = ["Base", "StoredFile"]
