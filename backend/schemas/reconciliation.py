"""Pydantic schemas for linked connections and the local card/bank ledger.

These models define the persisted-document contract: field names are
camelCase on disk and on the wire, and the sync-owned shadow fields use
underscore-prefixed aliases (``_externalBalance`` ...). Unknown keys on
cards and bank accounts are kept so user-entered details survive a
round trip through the sync engine.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from integrations.provider_protocol import ProviderSyncError


class DocumentModel(BaseModel):
    """Base for every model that is stored in or served as a document."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_document(self) -> dict[str, Any]:
        """Serialize to the JSON-safe, aliased form used for persistence."""
        return self.model_dump(mode="json", by_alias=True)


class AccountKind(str, Enum):
    """Kinds of externally reported accounts the engine distinguishes."""

    depository = "depository"
    credit = "credit"
    other = "other"


class BalanceSnapshot(DocumentModel):
    """Balance figures reported for one external account."""

    current: Optional[Decimal] = None
    available: Optional[Decimal] = None
    limit: Optional[Decimal] = None
    currency_code: str = "USD"


class ExternalAccount(DocumentModel):
    """One account as reported by the aggregation service.

    At most one of ``linked_card_id`` (credit) and
    ``linked_bank_account_id`` (depository) is ever set.
    """

    external_account_id: str
    display_name: Optional[str] = None
    official_name: Optional[str] = None
    kind: AccountKind = AccountKind.other
    sub_kind: Optional[str] = None
    masked_number: Optional[str] = None
    linked_card_id: Optional[str] = None
    linked_bank_account_id: Optional[str] = None
    balance: Optional[BalanceSnapshot] = None

    @field_validator("kind", mode="before")
    @classmethod
    def coerce_kind(cls, v: Any) -> Any:
        """Map loan/investment/unknown kinds onto ``other``."""
        if isinstance(v, AccountKind):
            return v
        value = str(v or "").strip().lower()
        if value in (AccountKind.depository.value, AccountKind.credit.value):
            return value
        return AccountKind.other.value

    @property
    def best_name(self) -> Optional[str]:
        """Official name when present, else the display name."""
        return self.official_name or self.display_name


class Connection(DocumentModel):
    """A linked institution: credential plus its reported accounts."""

    id: str
    institution_name: Optional[str] = None
    institution_id: Optional[str] = None
    access_credential: Optional[str] = None
    accounts: list[ExternalAccount] = Field(default_factory=list)
    last_sync: Optional[datetime] = None


class Card(DocumentModel):
    """A locally tracked credit card."""

    model_config = ConfigDict(extra="allow")

    id: str
    institution: Optional[str] = None
    name: Optional[str] = None
    nickname: Optional[str] = None
    limit: Optional[Decimal] = None
    mask: Optional[str] = None
    last4: Optional[str] = None
    notes: Optional[str] = None

    # Shadow fields, written only by the balance synchronizer and matcher
    external_account_id: Optional[str] = Field(default=None, alias="_externalAccountId")
    external_connection_id: Optional[str] = Field(default=None, alias="_externalConnectionId")
    external_balance: Optional[Decimal] = Field(default=None, alias="_externalBalance")
    external_available: Optional[Decimal] = Field(default=None, alias="_externalAvailable")
    external_limit: Optional[Decimal] = Field(default=None, alias="_externalLimit")
    external_last_sync: Optional[datetime] = Field(default=None, alias="_externalLastSync")

    @property
    def display_name(self) -> Optional[str]:
        return self.nickname or self.name


class BankAccount(DocumentModel):
    """A locally tracked checking or savings account."""

    model_config = ConfigDict(extra="allow")

    id: str
    bank: Optional[str] = None
    account_type: Optional[str] = None
    name: Optional[str] = None
    apy: Optional[Decimal] = None
    notes: Optional[str] = None

    external_account_id: Optional[str] = Field(default=None, alias="_externalAccountId")
    external_connection_id: Optional[str] = Field(default=None, alias="_externalConnectionId")
    external_balance: Optional[Decimal] = Field(default=None, alias="_externalBalance")
    external_available: Optional[Decimal] = Field(default=None, alias="_externalAvailable")
    external_last_sync: Optional[datetime] = Field(default=None, alias="_externalLastSync")


# ----------------------------------------------------------------------
# Engine results
# ----------------------------------------------------------------------


class AccountMatch(DocumentModel):
    """An external account together with the local record it resolved to."""

    external_account: ExternalAccount
    linked_id: str
    linked_type: Literal["card", "bank"]


class MatchOutcome(DocumentModel):
    """Result of matching one connection against the local ledger."""

    connection: Connection
    matched: list[AccountMatch] = Field(default_factory=list)
    unmatched: list[ExternalAccount] = Field(default_factory=list)
    new_cards: list[Card] = Field(default_factory=list)
    new_bank_accounts: list[BankAccount] = Field(default_factory=list)


class BalanceChange(DocumentModel):
    """One line of the post-sync summary."""

    name: Optional[str] = None
    type: str
    balance: Optional[Decimal] = None
    previous_balance: Optional[Decimal] = None


class BalanceSyncResult(DocumentModel):
    """Updated ledger collections produced by a balance sync."""

    connection: Connection
    updated_cards: list[Card] = Field(default_factory=list)
    updated_bank_accounts: list[BankAccount] = Field(default_factory=list)
    summary: list[BalanceChange] = Field(default_factory=list)


class DebtSuggestion(DocumentModel):
    """An outstanding card balance offered to the weekly input form."""

    card_id: str
    name: Optional[str] = None
    institution: Optional[str] = None
    balance: Decimal
    limit: Optional[Decimal] = None


class AutoFillSuggestion(DocumentModel):
    """Summary figures derived from synced balances."""

    checking: Optional[Decimal] = None
    vault: Optional[Decimal] = None
    debts: list[DebtSuggestion] = Field(default_factory=list)
    last_sync: Optional[datetime] = None


class FetchedBalance(DocumentModel):
    """One entry returned by the balance-fetch collaborator."""

    external_account_id: str
    current: Optional[Decimal] = None
    available: Optional[Decimal] = None
    limit: Optional[Decimal] = None
    currency_code: str = "USD"


class ConnectionRefreshResult(DocumentModel):
    """Outcome of refreshing one connection.

    ``error`` is set instead of raising when the balance fetch (or any
    other collaborator) failed, so a batch refresh degrades per
    connection.
    """

    connection_id: str
    institution_name: Optional[str] = None
    accounts_updated: int = 0
    new_records: int = 0
    summary: list[BalanceChange] = Field(default_factory=list)
    error: Optional[ProviderSyncError] = None

    @property
    def ok(self) -> bool:
        return self.error is None
