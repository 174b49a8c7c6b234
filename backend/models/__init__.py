"""SQLAlchemy ORM models."""

from .stored_document import StoredDocument
from .utils import generate_uuid

__all__ = ["StoredDocument", "generate_uuid"]
