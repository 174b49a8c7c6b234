"""Test fixtures and sample data."""
import pytest
from sqlalchemy.orm import Session

from schemas.reconciliation import BankAccount, Card, Connection
from services.document_store import BANK_ACCOUNTS_KEY, CARDS_KEY, CONNECTIONS_KEY, DocumentStore
from tests.fixtures.mocks import SAMPLE_PLAID_ACCOUNTS


def make_connection(
    connection_id: str = "item_amex",
    institution_name: str = "American Express",
    access_credential: str | None = "access-amex",
    accounts=None,
) -> Connection:
    """Build a Connection with the sample accounts unless others are given."""
    return Connection(
        id=connection_id,
        institution_name=institution_name,
        institution_id="ins_10",
        access_credential=access_credential,
        accounts=list(SAMPLE_PLAID_ACCOUNTS if accounts is None else accounts),
    )


def store_documents(
    db: Session,
    connections: list[Connection] | None = None,
    cards: list[Card] | None = None,
    bank_accounts: list[BankAccount] | None = None,
) -> None:
    """Persist the given records as the ledger's documents."""
    if connections is not None:
        DocumentStore.set(db, CONNECTIONS_KEY, [c.to_document() for c in connections])
    if cards is not None:
        DocumentStore.set(db, CARDS_KEY, [c.to_document() for c in cards])
    if bank_accounts is not None:
        DocumentStore.set(db, BANK_ACCOUNTS_KEY, [b.to_document() for b in bank_accounts])


@pytest.fixture
def connection() -> Connection:
    """An American Express connection with card, checking, savings and loan accounts."""
    return make_connection()


@pytest.fixture
def amex_card() -> Card:
    """A user-entered Amex card without any sync data."""
    return Card(
        id="card_gold",
        institution="Amex",
        name="American Express Gold Card",
        nickname="Gold",
        limit=None,
        notes="Dining card (···1001)",
        annualFee=250,
    )


@pytest.fixture
def checking_account() -> BankAccount:
    """A user-entered Amex checking account."""
    return BankAccount(
        id="bank_checking",
        bank="Amex",
        account_type="checking",
        name="Rewards Checking",
    )
