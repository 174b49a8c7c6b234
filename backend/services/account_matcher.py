"""Resolve aggregator-reported accounts onto local cards and bank accounts.

Matching is a fold over the connection's accounts: each step may attach
a link and fabricate a local record, and both are visible to the
following steps. Inputs are never mutated; the caller receives a new
Connection value plus the fabricated records and persists them.
"""

import logging
from typing import Callable, Optional

from schemas.reconciliation import (
    AccountKind,
    AccountMatch,
    BankAccount,
    Card,
    Connection,
    ExternalAccount,
    MatchOutcome,
)
from services.card_catalog import catalog_names
from services.fuzzy_matcher import fuzzy_match_card_name
from services.name_normalizer import (
    extract_last4,
    norm_digits,
    norm_text,
    normalize_institution,
    same_institution,
)

logger = logging.getLogger(__name__)

FABRICATED_ID_PREFIX = "plaid_"
FALLBACK_INSTITUTION = "Other"

# Name-substring matching ignores anything shorter than this.
MIN_NAME_LENGTH = 4


def fabricated_record_id(external_account_id: str) -> str:
    """Deterministic local id for a record created from an external account."""
    return f"{FABRICATED_ID_PREFIX}{external_account_id}"


def import_note(masked_number: Optional[str]) -> str:
    return f"Auto-imported from Plaid (···{masked_number or '?'})"


class _MatchState:
    """Accumulator threaded through one matching run."""

    def __init__(self, cards: list[Card], bank_accounts: list[BankAccount]):
        self.cards = list(cards)
        self.bank_accounts = list(bank_accounts)
        self.claimed_cards: set[str] = set()
        self.claimed_banks: set[str] = set()
        # Records some account of this connection reaches by identity.
        self.reserved_cards: set[str] = set()
        self.reserved_banks: set[str] = set()
        self.new_cards: list[Card] = []
        self.new_bank_accounts: list[BankAccount] = []


def auto_match_accounts(
    connection: Connection,
    cards: list[Card],
    bank_accounts: list[BankAccount],
    catalog_lookup: Callable[[str], list[str]] | None = None,
) -> MatchOutcome:
    """Link every account of ``connection`` to a local record.

    Credit accounts try, in order: the stored external id on a card, the
    last four digits within the same institution, then name containment
    within the same institution. Depository accounts try the stored
    external id, then a same-institution name/official-name/subtype
    heuristic. Anything left unresolved gets a fabricated record whose id
    is derived from the external id, so a second run finds it by identity
    and creates nothing new. Accounts of any other kind are returned in
    ``unmatched``.

    Within one run a local record is claimed by at most one external
    account.
    """
    lookup = catalog_lookup or catalog_names
    institution = normalize_institution(connection.institution_name)
    state = _MatchState(cards, bank_accounts)
    _reserve_identity_hits(connection, state)

    accounts: list[ExternalAccount] = []
    matched: list[AccountMatch] = []
    unmatched: list[ExternalAccount] = []

    for acct in connection.accounts:
        if acct.kind == AccountKind.credit:
            card_id = _resolve_card(acct, connection, institution, state, lookup)
            acct = acct.model_copy(update={"linked_card_id": card_id})
            matched.append(AccountMatch(external_account=acct, linked_id=card_id, linked_type="card"))
        elif acct.kind == AccountKind.depository:
            bank_id = _resolve_bank_account(acct, connection, institution, state)
            acct = acct.model_copy(update={"linked_bank_account_id": bank_id})
            matched.append(AccountMatch(external_account=acct, linked_id=bank_id, linked_type="bank"))
        else:
            unmatched.append(acct)
        accounts.append(acct)

    if state.new_cards or state.new_bank_accounts:
        logger.info(
            "Matched connection %s: %d linked, %d new cards, %d new bank accounts",
            connection.id, len(matched), len(state.new_cards), len(state.new_bank_accounts),
        )

    return MatchOutcome(
        connection=connection.model_copy(update={"accounts": accounts}),
        matched=matched,
        unmatched=unmatched,
        new_cards=state.new_cards,
        new_bank_accounts=state.new_bank_accounts,
    )


def _resolve_card(
    acct: ExternalAccount,
    connection: Connection,
    institution: str,
    state: _MatchState,
    lookup: Callable[[str], list[str]],
) -> str:
    acct_last4 = norm_digits(acct.masked_number)[-4:] or None
    acct_name = norm_text(acct.best_name)

    match = _find_by_identity(
        [c for c in state.cards if c.id not in state.claimed_cards], acct,
    )

    if match is None:
        candidates = [
            c for c in state.cards
            if c.id not in state.claimed_cards
            and c.id not in state.reserved_cards
            and same_institution(c.institution, institution)
        ]
        if acct_last4:
            match = next((c for c in candidates if extract_last4(c) == acct_last4), None)
        if match is None and acct_name:
            match = next((c for c in candidates if _names_overlap(c.display_name, acct_name)), None)

    if match is None:
        match = _fabricate_card(acct, connection, institution, acct_last4, lookup)
        state.cards.append(match)
        state.new_cards.append(match)

    state.claimed_cards.add(match.id)
    return match.id


def _resolve_bank_account(
    acct: ExternalAccount,
    connection: Connection,
    institution: str,
    state: _MatchState,
) -> str:
    match = _find_by_identity(
        [b for b in state.bank_accounts if b.id not in state.claimed_banks], acct,
    )

    if match is None:
        match = next(
            (
                b for b in state.bank_accounts
                if b.id not in state.claimed_banks
                and b.id not in state.reserved_banks
                and same_institution(b.bank, institution)
                and _bank_looks_alike(b, acct)
            ),
            None,
        )

    if match is None:
        match = _fabricate_bank_account(acct, connection, institution)
        state.bank_accounts.append(match)
        state.new_bank_accounts.append(match)

    state.claimed_banks.add(match.id)
    return match.id


def _reserve_identity_hits(connection: Connection, state: _MatchState) -> None:
    """Hold back identity hits from the weaker tiers of other accounts."""
    for acct in connection.accounts:
        if acct.kind == AccountKind.credit:
            hit = _find_by_identity(state.cards, acct)
            if hit is not None:
                state.reserved_cards.add(hit.id)
        elif acct.kind == AccountKind.depository:
            hit = _find_by_identity(state.bank_accounts, acct)
            if hit is not None:
                state.reserved_banks.add(hit.id)


def _find_by_identity(records, acct: ExternalAccount):
    """Record carrying this external id, else one with its fabricated id."""
    fabricated_id = fabricated_record_id(acct.external_account_id)
    for record in records:
        if record.external_account_id == acct.external_account_id:
            return record
    return next((r for r in records if r.id == fabricated_id), None)


def _names_overlap(local_name: Optional[str], external_name: str) -> bool:
    """Either name contains the other, both at least MIN_NAME_LENGTH long."""
    name = norm_text(local_name)
    if len(name) < MIN_NAME_LENGTH or len(external_name) < MIN_NAME_LENGTH:
        return False
    return name in external_name or external_name in name


def _bank_looks_alike(bank: BankAccount, acct: ExternalAccount) -> bool:
    local_name = norm_text(bank.name)
    display = norm_text(acct.display_name)
    official = norm_text(acct.official_name)
    sub_kind = norm_text(acct.sub_kind)

    if display and display in local_name:
        return True
    if local_name and local_name in official:
        return True
    return bool(sub_kind) and sub_kind == norm_text(bank.account_type)


def _fabricate_card(
    acct: ExternalAccount,
    connection: Connection,
    institution: str,
    last4: Optional[str],
    lookup: Callable[[str], list[str]],
) -> Card:
    names = lookup(institution) if institution else []
    limit = acct.balance.limit if acct.balance else None
    return Card(
        id=fabricated_record_id(acct.external_account_id),
        institution=institution or FALLBACK_INSTITUTION,
        name=fuzzy_match_card_name(acct.best_name, names),
        nickname="",
        limit=limit or None,
        mask=acct.masked_number or None,
        last4=last4,
        notes=import_note(acct.masked_number),
        external_account_id=acct.external_account_id,
        external_connection_id=connection.id,
    )


def _fabricate_bank_account(
    acct: ExternalAccount,
    connection: Connection,
    institution: str,
) -> BankAccount:
    account_type = "savings" if norm_text(acct.sub_kind) == "savings" else "checking"
    return BankAccount(
        id=fabricated_record_id(acct.external_account_id),
        bank=institution or FALLBACK_INSTITUTION,
        account_type=account_type,
        name=acct.best_name,
        notes=import_note(acct.masked_number),
        external_account_id=acct.external_account_id,
        external_connection_id=connection.id,
    )


def apply_connection_links(stored: Connection, matched: Connection) -> Connection:
    """Copy link ids from ``matched`` onto ``stored`` by external account id.

    A ``None`` link on ``matched`` never clears a link already stored.
    """
    links = {
        a.external_account_id: (a.linked_card_id, a.linked_bank_account_id)
        for a in matched.accounts
    }
    accounts = []
    for acct in stored.accounts:
        patch = links.get(acct.external_account_id)
        if patch is not None:
            card_id, bank_id = patch
            acct = acct.model_copy(update={
                "linked_card_id": card_id or acct.linked_card_id,
                "linked_bank_account_id": bank_id or acct.linked_bank_account_id,
            })
        accounts.append(acct)
    return stored.model_copy(update={"accounts": accounts})
