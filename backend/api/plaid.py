"""Plaid Link and connection API endpoints.

Provides the server-side half of the Plaid Link flow (link tokens and
public-token exchange) and the endpoints that manage linked connections:
listing, removal, re-matching and balance refreshes.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from database import get_db
from integrations.exceptions import ProviderError
from integrations.plaid_client import PlaidClient
from schemas.reconciliation import (
    AccountMatch,
    BankAccount,
    Card,
    Connection,
    ConnectionRefreshResult,
    ExternalAccount,
    MatchOutcome,
)
from services.refresh_service import (
    ConnectionNotFoundError,
    RefreshInProgressError,
    RefreshService,
    get_connection_store,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plaid", tags=["plaid"])


def _get_plaid_client() -> PlaidClient:
    """Dependency for injecting the Plaid client (overridable in tests)."""
    return PlaidClient()


def _require_configured(client: PlaidClient) -> None:
    if not client.is_configured():
        raise HTTPException(status_code=400, detail="Plaid is not configured")


# ------------------------------------------------------------------
# Request / Response schemas
# ------------------------------------------------------------------


class LinkTokenResponse(BaseModel):
    link_token: str


class ExchangeTokenRequest(BaseModel):
    public_token: str
    institution_id: str | None = None
    institution_name: str | None = None


class ConnectionResponse(BaseModel):
    """A linked connection as exposed over HTTP; never carries the credential."""

    id: str
    institution_name: str | None = None
    institution_id: str | None = None
    last_sync: datetime | None = None
    accounts: list[ExternalAccount] = []

    @classmethod
    def from_connection(cls, connection: Connection) -> "ConnectionResponse":
        return cls(
            id=connection.id,
            institution_name=connection.institution_name,
            institution_id=connection.institution_id,
            last_sync=connection.last_sync,
            accounts=connection.accounts,
        )


class MatchResponse(BaseModel):
    connection: ConnectionResponse
    matched: list[AccountMatch]
    unmatched: list[ExternalAccount]
    new_cards: list[Card]
    new_bank_accounts: list[BankAccount]

    @classmethod
    def from_outcome(cls, outcome: MatchOutcome) -> "MatchResponse":
        return cls(
            connection=ConnectionResponse.from_connection(outcome.connection),
            matched=outcome.matched,
            unmatched=outcome.unmatched,
            new_cards=outcome.new_cards,
            new_bank_accounts=outcome.new_bank_accounts,
        )


# ------------------------------------------------------------------
# Link flow
# ------------------------------------------------------------------


@router.post("/link-token", response_model=LinkTokenResponse)
def create_link_token(
    client: PlaidClient = Depends(_get_plaid_client),
):
    """Create a Plaid Link token for the frontend."""
    _require_configured(client)

    try:
        link_token = client.create_link_token()
        return LinkTokenResponse(link_token=link_token)
    except Exception as e:
        error_detail = str(e)
        # Surface actionable hint for the most common error
        if "INVALID_API_KEYS" in error_detail:
            hint = (
                "Plaid rejected the credentials. Check that PLAID_ENVIRONMENT "
                "matches your keys (sandbox or production). "
                "Each environment has different secrets."
            )
            logger.error("Plaid INVALID_API_KEYS: %s", hint)
            raise HTTPException(status_code=400, detail=hint)
        logger.error("Failed to create Plaid link token: %s", e)
        raise HTTPException(status_code=500, detail="Failed to create link token")


@router.post(
    "/exchange-token",
    response_model=MatchResponse,
    response_model_by_alias=False,
)
def exchange_token(
    body: ExchangeTokenRequest,
    db: Session = Depends(get_db),
    client: PlaidClient = Depends(_get_plaid_client),
):
    """Exchange a public_token, store the connection and match its accounts."""
    _require_configured(client)

    try:
        result = client.exchange_public_token(body.public_token)
        accounts = client.get_accounts(result["access_token"])
    except ProviderError as e:
        logger.error("Failed to exchange Plaid token: %s", e)
        raise HTTPException(status_code=500, detail="Failed to exchange token")

    # Re-linking the same item keeps link ids already stored on its accounts.
    store = get_connection_store(db)
    existing = store.get_connection(result["item_id"])
    if existing is not None:
        previous = {a.external_account_id: a for a in existing.accounts}
        accounts = [
            a.model_copy(update={
                "linked_card_id": previous[a.external_account_id].linked_card_id,
                "linked_bank_account_id": previous[a.external_account_id].linked_bank_account_id,
            }) if a.external_account_id in previous else a
            for a in accounts
        ]

    connection = Connection(
        id=result["item_id"],
        institution_name=body.institution_name or (existing.institution_name if existing else None),
        institution_id=body.institution_id or (existing.institution_id if existing else None),
        access_credential=result["access_token"],
        accounts=accounts,
        last_sync=existing.last_sync if existing else None,
    )
    outcome = RefreshService(client).link_connection(db, connection)
    return MatchResponse.from_outcome(outcome)


# ------------------------------------------------------------------
# Connections
# ------------------------------------------------------------------


@router.get(
    "/connections",
    response_model=list[ConnectionResponse],
    response_model_by_alias=False,
)
def list_connections(db: Session = Depends(get_db)):
    """List all linked connections."""
    return [
        ConnectionResponse.from_connection(c)
        for c in get_connection_store(db).get_connections()
    ]


@router.delete("/connections/{connection_id}")
def remove_connection(
    connection_id: str,
    db: Session = Depends(get_db),
    client: PlaidClient = Depends(_get_plaid_client),
):
    """Remove a connection (revokes the token with Plaid, then deletes locally)."""
    revoke = client.remove_item if client.is_configured() else None
    if not get_connection_store(db).remove_connection(connection_id, revoke=revoke):
        raise HTTPException(status_code=404, detail=f"Connection not found: {connection_id}")
    return {"status": "ok", "connection_id": connection_id}


@router.post(
    "/connections/{connection_id}/match",
    response_model=MatchResponse,
    response_model_by_alias=False,
)
def rematch_connection(
    connection_id: str,
    db: Session = Depends(get_db),
    client: PlaidClient = Depends(_get_plaid_client),
):
    """Run account matching again for one connection."""
    try:
        outcome = RefreshService(client).rematch_connection(db, connection_id)
    except ConnectionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Connection not found: {connection_id}")
    return MatchResponse.from_outcome(outcome)


# ------------------------------------------------------------------
# Balance refresh
# ------------------------------------------------------------------


@router.post(
    "/connections/{connection_id}/refresh",
    response_model=ConnectionRefreshResult,
    response_model_by_alias=False,
)
def refresh_connection(
    connection_id: str,
    db: Session = Depends(get_db),
    client: PlaidClient = Depends(_get_plaid_client),
):
    """Fetch balances for one connection and apply them to the ledger."""
    _require_configured(client)

    try:
        return RefreshService(client).refresh_connection(db, connection_id)
    except ConnectionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Connection not found: {connection_id}")
    except RefreshInProgressError:
        raise HTTPException(status_code=409, detail="Refresh already in progress")


@router.post(
    "/refresh",
    response_model=list[ConnectionRefreshResult],
    response_model_by_alias=False,
)
def refresh_all(
    db: Session = Depends(get_db),
    client: PlaidClient = Depends(_get_plaid_client),
):
    """Refresh every connection; failures are reported per connection."""
    _require_configured(client)
    return RefreshService(client).refresh_all(db)
