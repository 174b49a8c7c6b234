"""Provider protocol definitions for balance aggregation.

The reconciliation engine never talks to an aggregation service
directly. Callers pass in anything that satisfies
:class:`BalanceProvider`; the Plaid client is the production
implementation and the tests use an in-memory mock.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from schemas.reconciliation import ExternalAccount, FetchedBalance


class ErrorCategory(str, Enum):
    """Category of a provider sync error."""

    CONNECTION = "connection"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    DATA = "data"
    UNKNOWN = "unknown"


@dataclass
class ProviderSyncError:
    """Structured error recorded for one connection during a refresh.

    Returned (never raised) so a batch refresh can report per-connection
    failures while the other connections carry on.
    """

    message: str
    category: ErrorCategory = ErrorCategory.UNKNOWN
    institution_name: str | None = None
    connection_id: str | None = None
    retriable: bool = False

    def __str__(self) -> str:
        return self.message


class BalanceProvider(Protocol):
    """Contract for an account-aggregation service.

    ``fetch_balances`` and ``remove_item`` may raise
    :class:`~integrations.exceptions.ProviderError` subclasses; callers
    decide whether that is fatal.
    """

    @property
    def provider_name(self) -> str:
        """Return the provider name (e.g. ``"Plaid"``)."""
        ...

    def is_configured(self) -> bool:
        """Return True when API credentials are present."""
        ...

    def get_accounts(self, access_token: str) -> list["ExternalAccount"]:
        """Return the accounts reported for one linked institution."""
        ...

    def fetch_balances(self, access_token: str) -> list["FetchedBalance"]:
        """Return fresh balance snapshots for one linked institution."""
        ...

    def remove_item(self, access_token: str) -> None:
        """Revoke the access credential for one linked institution."""
        ...
