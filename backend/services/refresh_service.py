"""Refresh service - links connections and keeps their balances in sync.

This is the caller around the pure reconciliation functions: it loads a
consistent snapshot of connections, cards and bank accounts, runs the
matcher and balance synchronizer, and writes each document back whole.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from integrations.exceptions import ProviderError
from integrations.provider_protocol import BalanceProvider, ErrorCategory, ProviderSyncError
from schemas.reconciliation import Connection, ConnectionRefreshResult, MatchOutcome
from services.account_matcher import auto_match_accounts
from services.balance_sync import apply_balance_sync, apply_fetched_balances
from services.card_catalog import CardCatalogService, lookup_for
from services.connection_store import ConnectionStore
from services.document_store import CONNECTIONS_KEY, DocumentStore
from services.ledger_store import LedgerStore

logger = logging.getLogger(__name__)


class RefreshInProgressError(Exception):
    """Another refresh of the same connection holds its lock."""


class ConnectionNotFoundError(LookupError):
    """No stored connection has the requested id."""


def get_connection_store(db: Session) -> ConnectionStore:
    """ConnectionStore backed by the ``plaid-connections`` document."""
    return ConnectionStore(
        DocumentStore.loader(db, CONNECTIONS_KEY),
        DocumentStore.saver(db, CONNECTIONS_KEY),
    )


class RefreshService:
    """Orchestrates matching and balance refreshes per connection."""

    # One lock per connection id, shared across instances. Single-process
    # only; several workers would need an external lock.
    _locks: dict[str, threading.Lock] = {}
    _locks_guard = threading.Lock()

    def __init__(
        self,
        balance_provider: BalanceProvider,
        catalog_lookup: Optional[Callable[[str], list[str]]] = None,
    ):
        self._provider = balance_provider
        self._catalog_lookup = catalog_lookup

    @classmethod
    def _lock_for(cls, connection_id: str) -> threading.Lock:
        with cls._locks_guard:
            return cls._locks.setdefault(connection_id, threading.Lock())

    @classmethod
    def is_refresh_in_progress(cls, connection_id: str) -> bool:
        lock = cls._lock_for(connection_id)
        acquired = lock.acquire(blocking=False)
        if acquired:
            lock.release()
            return False
        return True

    def _lookup(self, db: Session) -> Callable[[str], list[str]]:
        if self._catalog_lookup is not None:
            return self._catalog_lookup
        return lookup_for(CardCatalogService().load(db))

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def link_connection(self, db: Session, connection: Connection) -> MatchOutcome:
        """Store a newly linked connection and match its accounts."""
        store = get_connection_store(db)
        store.upsert_connection(connection)
        logger.info(
            "Linked connection %s (%s) with %d accounts",
            connection.id, connection.institution_name, len(connection.accounts),
        )
        return self._match(db, store, connection)

    def rematch_connection(self, db: Session, connection_id: str) -> MatchOutcome:
        """Run the matcher again for a stored connection.

        Raises:
            ConnectionNotFoundError: If no connection has this id.
        """
        store = get_connection_store(db)
        connection = store.get_connection(connection_id)
        if connection is None:
            raise ConnectionNotFoundError(connection_id)
        return self._match(db, store, connection)

    def _match(self, db: Session, store: ConnectionStore, connection: Connection) -> MatchOutcome:
        ledger = LedgerStore(db)
        outcome = auto_match_accounts(
            connection,
            ledger.get_cards(),
            ledger.get_bank_accounts(),
            self._lookup(db),
        )
        ledger.merge_new_records(outcome)
        store.save_connection_links(outcome.connection)
        return outcome

    # ------------------------------------------------------------------
    # Balance refresh
    # ------------------------------------------------------------------

    def refresh_connection(self, db: Session, connection_id: str) -> ConnectionRefreshResult:
        """Fetch balances for one connection and apply them to the ledger.

        A failed balance fetch is reported on the result's ``error``
        and leaves the stored documents untouched.

        Raises:
            RefreshInProgressError: If this connection is already refreshing.
            ConnectionNotFoundError: If no connection has this id.
        """
        lock = self._lock_for(connection_id)
        if not lock.acquire(blocking=False):
            logger.warning("Refresh blocked: connection %s is already refreshing", connection_id)
            raise RefreshInProgressError(f"Refresh already in progress for {connection_id}")

        try:
            store = get_connection_store(db)
            connection = store.get_connection(connection_id)
            if connection is None:
                raise ConnectionNotFoundError(connection_id)
            return self._refresh(db, store, connection)
        finally:
            lock.release()

    def refresh_all(self, db: Session) -> list[ConnectionRefreshResult]:
        """Refresh every stored connection, one result per connection.

        A connection that fails (or is already refreshing) gets an error
        on its result; the rest are still processed.
        Connections removed while the batch runs are skipped.
        """
        results = []
        for connection in get_connection_store(db).get_connections():
            try:
                results.append(self.refresh_connection(db, connection.id))
            except RefreshInProgressError as e:
                results.append(ConnectionRefreshResult(
                    connection_id=connection.id,
                    institution_name=connection.institution_name,
                    error=ProviderSyncError(
                        message=str(e),
                        institution_name=connection.institution_name,
                        connection_id=connection.id,
                        retriable=True,
                    ),
                ))
            except ConnectionNotFoundError:
                logger.info("Connection %s was removed during refresh; skipping", connection.id)

        failed = sum(1 for r in results if not r.ok)
        logger.info("Refreshed %d connections, %d failed", len(results) - failed, failed)
        return results

    def _refresh(
        self,
        db: Session,
        store: ConnectionStore,
        connection: Connection,
    ) -> ConnectionRefreshResult:
        error = self._fetch_error_for_missing_credential(connection)
        fetched = []
        if error is None:
            try:
                fetched = self._provider.fetch_balances(connection.access_credential)
            except ProviderError as e:
                logger.warning(
                    "Balance fetch failed for %s (%s): %s",
                    connection.id, connection.institution_name, e,
                )
                error = e.to_sync_error(
                    connection_id=connection.id,
                    institution_name=connection.institution_name,
                )
            except Exception as e:
                logger.error(
                    "Unexpected error fetching balances for %s: %s",
                    connection.id, e, exc_info=True,
                )
                error = ProviderSyncError(
                    message=str(e),
                    category=ErrorCategory.UNKNOWN,
                    institution_name=connection.institution_name,
                    connection_id=connection.id,
                )

        if error is not None:
            return ConnectionRefreshResult(
                connection_id=connection.id,
                institution_name=connection.institution_name,
                error=error,
            )

        refreshed, updated = apply_fetched_balances(
            connection, fetched, datetime.now(timezone.utc)
        )

        ledger = LedgerStore(db)
        outcome = auto_match_accounts(
            refreshed,
            ledger.get_cards(),
            ledger.get_bank_accounts(),
            self._lookup(db),
        )
        new_records = ledger.merge_new_records(outcome)

        sync = apply_balance_sync(
            outcome.connection, ledger.get_cards(), ledger.get_bank_accounts()
        )
        ledger.save_cards(sync.updated_cards)
        ledger.save_bank_accounts(sync.updated_bank_accounts)
        store.upsert_connection(sync.connection)

        logger.info(
            "Refreshed %s (%s): %d balances, %d records updated",
            connection.id, connection.institution_name, updated, len(sync.summary),
        )
        return ConnectionRefreshResult(
            connection_id=connection.id,
            institution_name=connection.institution_name,
            accounts_updated=updated,
            new_records=new_records,
            summary=sync.summary,
        )

    @staticmethod
    def _fetch_error_for_missing_credential(connection: Connection) -> Optional[ProviderSyncError]:
        if connection.access_credential:
            return None
        logger.warning("Connection %s has no access credential", connection.id)
        return ProviderSyncError(
            message="Connection has no access credential; link it again",
            category=ErrorCategory.AUTH,
            institution_name=connection.institution_name,
            connection_id=connection.id,
        )
