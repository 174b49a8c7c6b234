"""Document store - whole-document key-value persistence.

The reconciliation engine only needs "load the document" / "save the
document" capabilities. This service provides them on top of the
``stored_documents`` table; :meth:`DocumentStore.loader` and
:meth:`DocumentStore.saver` adapt a key into the plain callables the
connection store expects.
"""

import json
import logging
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.stored_document import StoredDocument

logger = logging.getLogger(__name__)

CONNECTIONS_KEY = "plaid-connections"
CARDS_KEY = "card-portfolio"
BANK_ACCOUNTS_KEY = "bank-accounts"
CARD_CATALOG_KEY = "issuer-cards-cache"
CARD_CATALOG_UPDATED_KEY = "issuer-cards-updated"


class DocumentStore:
    """Service for reading and replacing JSON documents by key."""

    @staticmethod
    def get_record(db: Session, key: str) -> StoredDocument | None:
        """Get the full StoredDocument record by key, or None if not found."""
        return db.query(StoredDocument).filter(StoredDocument.key == key).first()

    @staticmethod
    def get(db: Session, key: str, default: Any = None) -> Any:
        """Return the parsed document for ``key``, or ``default`` if absent."""
        record = DocumentStore.get_record(db, key)
        if record is None:
            return default
        return json.loads(record.value)

    @staticmethod
    def set(db: Session, key: str, value: Any) -> StoredDocument:
        """Replace the document stored under ``key`` and commit."""
        serialized = json.dumps(value)
        record = DocumentStore.get_record(db, key)

        if record is None:
            record = StoredDocument(key=key, value=serialized)
            db.add(record)
            try:
                db.commit()
            except IntegrityError:
                # Another writer created the key first; last write wins.
                db.rollback()
                record = DocumentStore.get_record(db, key)
                record.value = serialized
                db.commit()
        else:
            record.value = serialized
            db.commit()

        logger.debug("Saved document %s (%d bytes)", key, len(serialized))
        db.refresh(record)
        return record

    @staticmethod
    def delete(db: Session, key: str) -> bool:
        """Delete a document by key. Returns True if deleted, False if not found."""
        record = DocumentStore.get_record(db, key)
        if record is None:
            return False
        db.delete(record)
        db.commit()
        logger.info("Deleted document: %s", key)
        return True

    @staticmethod
    def loader(db: Session, key: str) -> Callable[[], list]:
        """Return a zero-argument callable that loads ``key`` as a list."""

        def load() -> list:
            return DocumentStore.get(db, key) or []

        return load

    @staticmethod
    def saver(db: Session, key: str) -> Callable[[list], None]:
        """Return a callable that replaces the document stored under ``key``."""

        def save(value: list) -> None:
            DocumentStore.set(db, key, value)

        return save
