"""Database setup and session management.

Every persisted document (connections with their access credentials,
cards, bank accounts, catalog cache) lives in this database. When
``sqlcipher3`` is installed and ``SQLCIPHER_KEY`` is configured, the
SQLite file is encrypted at rest.
"""

import logging
import re
from functools import lru_cache
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def _sqlcipher_available() -> bool:
    """Return True if the ``sqlcipher3`` package is importable."""
    try:
        import sqlcipher3  # noqa: F401

        return True
    except ImportError:
        return False


def _db_file_path(database_url: str) -> Path | None:
    """Extract the filesystem path from a ``sqlite:///`` URL.

    Returns ``None`` for in-memory databases and non-SQLite URLs.
    """
    if not database_url.startswith("sqlite"):
        return None
    path_part = database_url.split("///", 1)[-1]
    if not path_part or path_part == ":memory:":
        return None
    return Path(path_part)


def _is_encrypted_db(path: Path) -> bool:
    """Check whether an existing database file is encrypted.

    A plain SQLite file starts with ``SQLite format 3\\0``; anything
    else (except an empty file) is treated as encrypted.
    """
    try:
        with open(path, "rb") as f:
            header = f.read(16)
    except OSError:
        return False
    if not header:
        return False
    return header != b"SQLite format 3\x00"


_HEX_KEY_RE = re.compile(r"^[0-9a-f]{64}$")


def _validate_hex_key(key: str) -> str:
    """Validate that a key is a 64-char lowercase hex string (256-bit)."""
    if not _HEX_KEY_RE.match(key):
        raise ValueError(
            "Invalid SQLCipher key format: expected 64 hex characters"
        )
    return key


def _resolve_sqlcipher_key(database_url: str) -> str | None:
    """Return the SQLCipher key to use, or ``None`` for plain SQLite.

    Raises ``RuntimeError`` if the database file on disk is encrypted
    but no key is configured.
    """
    configured_key = settings.SQLCIPHER_KEY
    if configured_key:
        return _validate_hex_key(configured_key)

    db_path = _db_file_path(database_url)
    if db_path is not None and db_path.exists() and _is_encrypted_db(db_path):
        raise RuntimeError(
            f"Database file '{db_path}' is encrypted but no SQLCIPHER_KEY "
            "is configured. Store the key in the keychain or set the "
            "SQLCIPHER_KEY environment variable."
        )

    if db_path is not None:
        logger.info(
            "No SQLCIPHER_KEY configured; access credentials are stored unencrypted"
        )
    return None


def _attach_pragma_key(engine, raw_hex_key: str) -> None:
    """Register a ``connect`` listener that issues ``PRAGMA key``."""
    _validate_hex_key(raw_hex_key)

    @event.listens_for(engine, "connect")
    def _set_key(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute(f"PRAGMA key=\"x'{raw_hex_key}'\"")
        cursor.close()


@lru_cache
def get_engine():
    """Get or create the database engine (cached)."""
    connect_args = {}
    database_url = settings.DATABASE_URL

    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    key = None
    if database_url.startswith("sqlite") and _sqlcipher_available():
        key = _resolve_sqlcipher_key(database_url)

    if key:
        import sqlcipher3

        engine = create_engine(
            database_url,
            connect_args=connect_args,
            echo=False,
            module=sqlcipher3.dbapi2,
        )
        _attach_pragma_key(engine, key)
        logger.info("Database engine created with SQLCipher encryption")
    else:
        engine = create_engine(
            database_url,
            connect_args=connect_args,
            echo=False,
        )

    return engine


def get_session_local():
    """Get a sessionmaker bound to the engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def init_db() -> None:
    """Create all tables that do not exist yet."""
    import models  # noqa: F401  (registers the ORM classes on Base)

    Base.metadata.create_all(bind=get_engine())


def get_db():
    """Dependency that provides a database session.

    Services commit their own whole-document writes; on error the
    session is rolled back before being closed.
    """
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
