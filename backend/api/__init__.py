"""API route handlers."""
from . import ledger, plaid

__all__ = ["ledger", "plaid"]
