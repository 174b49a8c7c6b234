"""Copy fetched external balances onto the linked local records."""

import logging
from datetime import datetime
from typing import Optional

from schemas.reconciliation import (
    BalanceChange,
    BalanceSnapshot,
    BalanceSyncResult,
    BankAccount,
    Card,
    Connection,
    ExternalAccount,
    FetchedBalance,
)

logger = logging.getLogger(__name__)


def apply_balance_sync(
    connection: Connection,
    cards: list[Card],
    bank_accounts: list[BankAccount],
) -> BalanceSyncResult:
    """Stamp each linked record's shadow fields from its account's balance.

    Accounts without a balance snapshot are skipped. A missing link is
    recovered from a local record already carrying the account's
    external id before the balance is applied; accounts that still have
    no local record are skipped silently. A card's user-facing limit is
    only filled when it was unset.

    Returns new collections; the inputs are left untouched.
    """
    updated_cards = list(cards)
    updated_banks = list(bank_accounts)
    card_index = {c.id: i for i, c in enumerate(updated_cards)}
    bank_index = {b.id: i for i, b in enumerate(updated_banks)}
    summary: list[BalanceChange] = []
    accounts: list[ExternalAccount] = []

    for acct in connection.accounts:
        balance = acct.balance
        if balance is None:
            accounts.append(acct)
            continue

        if not acct.linked_card_id:
            recovered = _find_by_external_id(updated_cards, acct.external_account_id)
            if recovered is not None:
                logger.info(
                    "Recovered card link %s for account %s",
                    recovered.id, acct.external_account_id,
                )
                acct = acct.model_copy(update={"linked_card_id": recovered.id})

        idx = card_index.get(acct.linked_card_id) if acct.linked_card_id else None
        if idx is not None:
            card = updated_cards[idx]
            updated_cards[idx] = card.model_copy(update={
                "external_balance": balance.current,
                "external_available": balance.available,
                "external_limit": balance.limit,
                "external_last_sync": connection.last_sync,
                "external_account_id": acct.external_account_id,
                "external_connection_id": connection.id,
                "limit": card.limit if card.limit is not None else balance.limit,
            })
            summary.append(BalanceChange(
                name=card.display_name,
                type="credit",
                balance=balance.current,
                previous_balance=card.external_balance,
            ))

        if not acct.linked_bank_account_id:
            recovered = _find_by_external_id(updated_banks, acct.external_account_id)
            if recovered is not None:
                logger.info(
                    "Recovered bank account link %s for account %s",
                    recovered.id, acct.external_account_id,
                )
                acct = acct.model_copy(update={"linked_bank_account_id": recovered.id})

        idx = bank_index.get(acct.linked_bank_account_id) if acct.linked_bank_account_id else None
        if idx is not None:
            bank = updated_banks[idx]
            updated_banks[idx] = bank.model_copy(update={
                "external_balance": balance.current,
                "external_available": balance.available,
                "external_last_sync": connection.last_sync,
                "external_account_id": acct.external_account_id,
                "external_connection_id": connection.id,
            })
            summary.append(BalanceChange(
                name=bank.name,
                type=acct.sub_kind or "depository",
                balance=_first_set(balance.available, balance.current),
                previous_balance=bank.external_balance,
            ))

        accounts.append(acct)

    return BalanceSyncResult(
        connection=connection.model_copy(update={"accounts": accounts}),
        updated_cards=updated_cards,
        updated_bank_accounts=updated_banks,
        summary=summary,
    )


def apply_fetched_balances(
    connection: Connection,
    fetched: list[FetchedBalance],
    synced_at: datetime,
) -> tuple[Connection, int]:
    """Attach freshly fetched balances to the connection's accounts.

    Accounts missing from ``fetched`` keep their previous snapshot.
    ``last_sync`` is stamped with ``synced_at`` either way.

    Returns:
        The new Connection and the number of accounts updated.
    """
    by_id = {f.external_account_id: f for f in fetched}
    accounts = []
    updated = 0
    for acct in connection.accounts:
        fresh = by_id.get(acct.external_account_id)
        if fresh is not None:
            acct = acct.model_copy(update={"balance": BalanceSnapshot(
                current=fresh.current,
                available=fresh.available,
                limit=fresh.limit,
                currency_code=fresh.currency_code,
            )})
            updated += 1
        accounts.append(acct)
    return connection.model_copy(update={"accounts": accounts, "last_sync": synced_at}), updated


def _find_by_external_id(records, external_account_id: str):
    return next((r for r in records if r.external_account_id == external_account_id), None)


def _first_set(*values) -> Optional[object]:
    return next((v for v in values if v is not None), None)
