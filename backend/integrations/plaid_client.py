"""Plaid API client.

This module implements the BalanceProvider protocol for Plaid via the
plaid-python SDK: the link-token / public-token exchange used when a
user links an institution, account discovery, live balance fetches and
item removal.

Plaid issues one access token per linked institution (an "Item"). The
token is stored on the Connection document; this client never persists
anything itself.
"""

import json
import logging
from decimal import Decimal, InvalidOperation

from plaid import ApiException, Environment
from plaid.api.plaid_api import PlaidApi
from plaid.api_client import ApiClient
from plaid.configuration import Configuration
from plaid.model.accounts_balance_get_request import AccountsBalanceGetRequest
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.country_code import CountryCode
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.item_remove_request import ItemRemoveRequest
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products
from urllib3.exceptions import HTTPError as TransportError

from config import settings
from integrations.exceptions import (
    ProviderAPIError,
    ProviderAuthError,
    ProviderConnectionError,
    ProviderError,
)
from schemas.reconciliation import ExternalAccount, FetchedBalance

logger = logging.getLogger(__name__)

# Plaid's Development environment is retired; only sandbox and production remain.
_ENVIRONMENT_MAP: dict[str, str] = {
    "sandbox": Environment.Sandbox,
    "production": Environment.Production,
}

_AUTH_ERROR_CODES = frozenset({"INVALID_ACCESS_TOKEN", "ITEM_LOGIN_REQUIRED"})


class PlaidClient:
    """Wrapper around the Plaid API implementing BalanceProvider."""

    def __init__(
        self,
        client_id: str | None = None,
        secret: str | None = None,
        environment: str | None = None,
    ):
        self._client_id = client_id or settings.PLAID_CLIENT_ID
        self._secret = secret or settings.PLAID_SECRET
        self._environment = environment or settings.PLAID_ENVIRONMENT

        # Lazily created on first use
        self._api: PlaidApi | None = None

    def _get_api(self) -> PlaidApi:
        """Return (and cache) a PlaidApi instance."""
        if self._api is None:
            env_key = self._environment.lower()
            host = _ENVIRONMENT_MAP.get(env_key)
            if host is None:
                logger.warning(
                    "Unknown PLAID_ENVIRONMENT=%r, falling back to sandbox",
                    self._environment,
                )
                host = Environment.Sandbox
            logger.info("Plaid API client: environment=%s, host=%s", env_key, host)
            configuration = Configuration(
                host=host,
                api_key={
                    "clientId": self._client_id,
                    "secret": self._secret,
                },
            )
            self._api = PlaidApi(ApiClient(configuration))
        return self._api

    @property
    def provider_name(self) -> str:
        return "Plaid"

    def is_configured(self) -> bool:
        """Check if Plaid credentials are configured."""
        return bool(self._client_id) and bool(self._secret)

    # ------------------------------------------------------------------
    # Link flow
    # ------------------------------------------------------------------

    def create_link_token(self) -> str:
        """Create a Plaid Link token for the browser-based link flow."""
        request = LinkTokenCreateRequest(
            user=LinkTokenCreateRequestUser(client_user_id="card-ledger-user"),
            client_name="Card Ledger",
            products=[Products("transactions")],
            country_codes=[CountryCode("US")],
            language="en",
        )
        response = self._call(self._get_api().link_token_create, request)
        return response["link_token"]

    def exchange_public_token(self, public_token: str) -> dict:
        """Exchange a Link ``public_token`` for a durable access token.

        Returns:
            Dict with ``access_token`` and ``item_id``.
        """
        request = ItemPublicTokenExchangeRequest(public_token=public_token)
        response = self._call(self._get_api().item_public_token_exchange, request)
        return {
            "access_token": response["access_token"],
            "item_id": response["item_id"],
        }

    def remove_item(self, access_token: str) -> None:
        """Revoke an access token via Plaid's /item/remove endpoint."""
        self._call(
            self._get_api().item_remove,
            ItemRemoveRequest(access_token=access_token),
        )

    # ------------------------------------------------------------------
    # Accounts and balances
    # ------------------------------------------------------------------

    def get_accounts(self, access_token: str) -> list[ExternalAccount]:
        """Return the accounts Plaid reports for one Item, unlinked."""
        response = self._call(
            self._get_api().accounts_get,
            AccountsGetRequest(access_token=access_token),
        )
        return [
            self._map_account(acct)
            for acct in response.get("accounts", []) or []
            if acct.get("account_id")
        ]

    def fetch_balances(self, access_token: str) -> list[FetchedBalance]:
        """Fetch live balances for every account of one Item."""
        response = self._call(
            self._get_api().accounts_balance_get,
            AccountsBalanceGetRequest(access_token=access_token),
        )
        balances: list[FetchedBalance] = []
        for acct in response.get("accounts", []) or []:
            account_id = acct.get("account_id")
            if not account_id:
                continue
            raw = acct.get("balances") or {}
            balances.append(FetchedBalance(
                external_account_id=account_id,
                current=self._to_decimal(raw.get("current")),
                available=self._to_decimal(raw.get("available")),
                limit=self._to_decimal(raw.get("limit")),
                currency_code=(raw.get("iso_currency_code") or "USD").upper(),
            ))
        logger.info("Plaid: fetched balances for %d accounts", len(balances))
        return balances

    def _map_account(self, acct) -> ExternalAccount:
        """Map a Plaid account object onto an ExternalAccount."""
        name = acct.get("name")
        return ExternalAccount(
            external_account_id=acct.get("account_id"),
            display_name=name,
            official_name=acct.get("official_name") or name,
            kind=self._enum_value(acct.get("type")),
            sub_kind=self._enum_value(acct.get("subtype")),
            masked_number=acct.get("mask"),
        )

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    def _call(self, method, request):
        """Invoke an SDK method, translating ApiException to ProviderError."""
        try:
            return method(request)
        except ApiException as e:
            raise self._map_plaid_error(e) from e
        except (OSError, TransportError) as e:
            raise ProviderConnectionError(
                f"Could not reach Plaid: {e}", provider_name=self.provider_name
            ) from e

    @staticmethod
    def _map_plaid_error(exc: ApiException) -> ProviderError:
        """Map a Plaid ApiException to a typed ProviderError."""
        status = exc.status or 0
        message = str(exc)

        error_code = ""
        try:
            body = json.loads(exc.body) if exc.body else {}
        except (TypeError, ValueError):
            body = {}
        if isinstance(body, dict):
            error_code = body.get("error_code", "") or ""
            error_message = body.get("error_message", "")
            if error_message:
                message = f"Plaid error ({error_code}): {error_message}"

        if status in (401, 403) or error_code in _AUTH_ERROR_CODES:
            return ProviderAuthError(message, provider_name="Plaid")
        return ProviderAPIError(
            message,
            provider_name="Plaid",
            status_code=status or None,
            error_code=error_code,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _enum_value(value) -> str | None:
        """Unwrap SDK enum models (AccountType, AccountSubtype) to plain strings."""
        if value is None:
            return None
        return str(getattr(value, "value", value))

    @staticmethod
    def _to_decimal(value) -> Decimal | None:
        """Convert a value to Decimal, returning None on failure."""
        if value is None:
            return None
        try:
            return Decimal(str(value))
        except (InvalidOperation, ValueError):
            return None
