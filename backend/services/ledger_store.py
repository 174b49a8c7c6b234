"""Card and bank-account documents as validated model lists."""

import logging

from pydantic import ValidationError
from sqlalchemy.orm import Session

from schemas.reconciliation import BankAccount, Card, MatchOutcome
from services.document_store import BANK_ACCOUNTS_KEY, CARDS_KEY, DocumentStore

logger = logging.getLogger(__name__)


class LedgerStore:
    """Loads and replaces the ``card-portfolio`` and ``bank-accounts`` documents."""

    def __init__(self, db: Session):
        self._db = db

    def get_cards(self) -> list[Card]:
        return self._load(CARDS_KEY, Card)

    def save_cards(self, cards: list[Card]) -> None:
        DocumentStore.set(self._db, CARDS_KEY, [c.to_document() for c in cards])

    def get_bank_accounts(self) -> list[BankAccount]:
        return self._load(BANK_ACCOUNTS_KEY, BankAccount)

    def save_bank_accounts(self, bank_accounts: list[BankAccount]) -> None:
        DocumentStore.set(self._db, BANK_ACCOUNTS_KEY, [b.to_document() for b in bank_accounts])

    def merge_new_records(self, outcome: MatchOutcome) -> int:
        """Append fabricated records whose id is not stored yet.

        Returns:
            Number of records added.
        """
        added = 0
        if outcome.new_cards:
            cards = self.get_cards()
            known = {c.id for c in cards}
            fresh = [c for c in outcome.new_cards if c.id not in known]
            if fresh:
                self.save_cards(cards + fresh)
                added += len(fresh)
        if outcome.new_bank_accounts:
            banks = self.get_bank_accounts()
            known = {b.id for b in banks}
            fresh = [b for b in outcome.new_bank_accounts if b.id not in known]
            if fresh:
                self.save_bank_accounts(banks + fresh)
                added += len(fresh)
        if added:
            logger.info("Added %d auto-imported records", added)
        return added

    def _load(self, key: str, model):
        records = []
        for doc in DocumentStore.get(self._db, key) or []:
            try:
                records.append(model.model_validate(doc))
            except ValidationError as e:
                logger.warning("Skipping malformed %s entry: %s", key, e)
        return records
