"""Keychain-backed storage for the application's own secrets.

Wraps ``keyring`` so the Plaid API keys and the database encryption key
can live in the OS keychain instead of a ``.env`` file. ``keyring`` is
imported lazily; without it every lookup simply misses and settings fall
back to the environment.

Per-connection Plaid access tokens are *not* stored here; they are part
of the ``plaid-connections`` document (see ``database`` for encryption
at rest).
"""

import logging

logger = logging.getLogger(__name__)

SERVICE_NAME = "card-ledger"

CREDENTIAL_KEYS: frozenset[str] = frozenset(
    {
        "PLAID_CLIENT_ID",
        "PLAID_SECRET",
        "SQLCIPHER_KEY",
    }
)


def _keyring():
    """Return the ``keyring`` module, or ``None`` when it is not installed."""
    try:
        import keyring
    except ImportError:
        return None
    return keyring


def get_credential(key: str) -> str | None:
    """Look up ``key`` in the keychain.

    Returns ``None`` when the key is absent, keyring is not installed,
    or the backend errors.
    """
    backend = _keyring()
    if backend is None:
        return None
    try:
        return backend.get_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("keyring lookup failed for %s", key, exc_info=True)
        return None


def set_credential(key: str, value: str) -> bool:
    """Store ``value`` under ``key``; only :data:`CREDENTIAL_KEYS` are accepted.

    Returns ``True`` on success.
    """
    if key not in CREDENTIAL_KEYS:
        logger.warning("Refusing to store unknown credential key: %s", key)
        return False
    if not value or not value.strip():
        logger.warning("Refusing to store empty value for %s", key)
        return False

    backend = _keyring()
    if backend is None:
        logger.warning("keyring is not installed; cannot store %s", key)
        return False
    try:
        backend.set_password(SERVICE_NAME, key, value)
    except Exception:
        logger.warning("Failed to store %s in keychain", key, exc_info=True)
        return False
    logger.info("Stored %s in keychain", key)
    return True


def delete_credential(key: str) -> bool:
    """Remove ``key`` from the keychain. Returns ``True`` if it was deleted."""
    if key not in CREDENTIAL_KEYS:
        logger.warning("Refusing to delete unknown credential key: %s", key)
        return False

    backend = _keyring()
    if backend is None:
        return False
    try:
        backend.delete_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("Failed to delete %s from keychain", key, exc_info=True)
        return False
    logger.info("Deleted %s from keychain", key)
    return True
