"""StoredDocument model - key-value store of whole JSON documents."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Text

from database import Base
from models.utils import generate_uuid


class StoredDocument(Base):
    """One persisted document (e.g. ``plaid-connections``) as serialized JSON.

    Documents are always replaced whole; there are no partial-field
    updates.
    """

    __tablename__ = "stored_documents"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    key = Column(String, unique=True, index=True, nullable=False)
    value = Column(Text, nullable=False)  # JSON-serialized
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
