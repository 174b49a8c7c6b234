"""Local ledger API endpoints: cards, bank accounts and auto-fill figures."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from schemas.reconciliation import AutoFillSuggestion, BankAccount, Card
from services.autofill_service import get_auto_fill_suggestion
from services.ledger_store import LedgerStore

router = APIRouter(prefix="/api/ledger", tags=["ledger"])


@router.get("/cards", response_model=list[Card])
def list_cards(db: Session = Depends(get_db)):
    """List stored cards, including their synced shadow fields."""
    return LedgerStore(db).get_cards()


@router.get("/bank-accounts", response_model=list[BankAccount])
def list_bank_accounts(db: Session = Depends(get_db)):
    """List stored bank accounts, including their synced shadow fields."""
    return LedgerStore(db).get_bank_accounts()


@router.get("/autofill", response_model=AutoFillSuggestion)
def get_autofill(db: Session = Depends(get_db)):
    """Checking, savings and card-debt figures for the weekly input form."""
    ledger = LedgerStore(db)
    return get_auto_fill_suggestion(ledger.get_cards(), ledger.get_bank_accounts())
