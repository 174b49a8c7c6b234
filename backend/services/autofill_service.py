"""Weekly-input auto-fill figures derived from synced balances."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from schemas.reconciliation import AutoFillSuggestion, BankAccount, Card, DebtSuggestion


def get_auto_fill_suggestion(
    cards: list[Card],
    bank_accounts: list[BankAccount],
) -> AutoFillSuggestion:
    """Summarize checking, savings ("vault") and card debt balances.

    Bank balances prefer the available figure over the current one and
    only count accounts that have been synced. A total of zero is
    reported as ``None``. ``last_sync`` is the most recent sync stamp
    among bank accounts, or among cards when no bank account has one.
    """
    debts = [
        DebtSuggestion(
            card_id=c.id,
            name=c.display_name,
            institution=c.institution,
            balance=c.external_balance,
            limit=c.external_limit or c.limit,
        )
        for c in cards
        if c.external_balance is not None and c.external_balance > 0
    ]

    last_sync = _latest(b.external_last_sync for b in bank_accounts) or _latest(
        c.external_last_sync for c in cards
    )

    return AutoFillSuggestion(
        checking=_sum_synced(bank_accounts, "checking"),
        vault=_sum_synced(bank_accounts, "savings"),
        debts=debts,
        last_sync=last_sync,
    )


def _sum_synced(bank_accounts: list[BankAccount], account_type: str) -> Optional[Decimal]:
    total = Decimal("0")
    for b in bank_accounts:
        if b.account_type != account_type or b.external_balance is None:
            continue
        amount = b.external_available if b.external_available is not None else b.external_balance
        total += amount
    return total or None


def _latest(stamps: Iterable[Optional[datetime]]) -> Optional[datetime]:
    present = [_ensure_utc(s) for s in stamps if s is not None]
    return max(present) if present else None


def _ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive stamps so they compare with aware ones."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt
