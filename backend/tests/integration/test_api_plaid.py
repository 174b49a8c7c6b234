"""Integration tests for Plaid API endpoints."""

import pytest
from fastapi.testclient import TestClient

from api.plaid import _get_plaid_client
from database import get_db
from main import app
from services.ledger_store import LedgerStore
from services.refresh_service import RefreshService, get_connection_store
from tests.fixtures import make_connection, store_documents
from tests.fixtures.mocks import SAMPLE_PLAID_ACCOUNTS, MockPlaidClient


@pytest.fixture
def client_for(db):
    """Build a test client around an arbitrary mock Plaid client."""

    def _build(mock_client):
        def override_get_db():
            try:
                yield db
            finally:
                pass

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[_get_plaid_client] = lambda: mock_client
        return TestClient(app)

    yield _build
    app.dependency_overrides.clear()


class TestCreateLinkToken:
    def test_creates_link_token(self, client):
        response = client.post("/api/plaid/link-token")
        assert response.status_code == 200
        assert response.json() == {"link_token": "link-sandbox-test-token"}

    def test_returns_400_when_not_configured(self, client_for):
        client = client_for(MockPlaidClient(should_fail=True))

        response = client.post("/api/plaid/link-token")

        assert response.status_code == 400
        assert response.json()["detail"] == "Plaid is not configured"


class TestExchangeToken:
    def test_exchanges_token_and_links_accounts(self, client, db):
        response = client.post(
            "/api/plaid/exchange-token",
            json={
                "public_token": "public-sandbox-test",
                "institution_id": "ins_10",
                "institution_name": "American Express",
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["connection"]["id"] == "item_amex"
        assert data["connection"]["institution_name"] == "American Express"
        assert "access_credential" not in data["connection"]
        assert [m["linked_id"] for m in data["matched"]] == [
            "plaid_acct_gold", "plaid_acct_checking", "plaid_acct_savings",
        ]
        assert [u["external_account_id"] for u in data["unmatched"]] == ["acct_loan"]
        assert len(data["new_cards"]) == 1
        assert len(data["new_bank_accounts"]) == 2

        stored = get_connection_store(db).get_connection("item_amex")
        assert stored.access_credential == "access-amex"
        assert stored.accounts[0].linked_card_id == "plaid_acct_gold"

    def test_links_existing_card(self, client, db, amex_card):
        store_documents(db, cards=[amex_card])

        response = client.post(
            "/api/plaid/exchange-token",
            json={"public_token": "public-sandbox-test", "institution_name": "American Express"},
        )

        assert response.status_code == 200
        assert response.json()["matched"][0]["linked_id"] == "card_gold"
        assert [c.id for c in LedgerStore(db).get_cards()] == ["card_gold"]

    def test_relink_keeps_existing_links(self, client, db):
        accounts = [
            SAMPLE_PLAID_ACCOUNTS[0].model_copy(update={"linked_card_id": "card_manual"}),
        ]
        store_documents(db, connections=[make_connection(accounts=accounts)])

        response = client.post(
            "/api/plaid/exchange-token", json={"public_token": "public-sandbox-test"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["connection"]["institution_name"] == "American Express"
        stored = get_connection_store(db).get_connection("item_amex")
        assert stored.accounts[0].linked_card_id == "card_manual"
        assert len(get_connection_store(db).get_connections()) == 1

    def test_returns_500_on_provider_error(self, client_for):
        mock_client = MockPlaidClient(failure_type="auth")
        mock_client._should_fail = True
        mock_client.is_configured = lambda: True
        client = client_for(mock_client)

        response = client.post(
            "/api/plaid/exchange-token", json={"public_token": "public-sandbox-test"},
        )

        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to exchange token"


class TestConnections:
    def test_list_connections(self, client, db, connection):
        store_documents(db, connections=[connection])

        response = client.get("/api/plaid/connections")

        assert response.status_code == 200
        data = response.json()
        assert len(data) == 1
        assert data[0]["id"] == "item_amex"
        assert data[0]["institution_name"] == "American Express"
        assert len(data[0]["accounts"]) == 4
        assert "access_credential" not in data[0]

    def test_list_empty(self, client):
        response = client.get("/api/plaid/connections")
        assert response.status_code == 200
        assert response.json() == []

    def test_remove_connection_revokes_token(self, client, db, connection, mock_plaid_client):
        store_documents(db, connections=[connection])

        response = client.delete("/api/plaid/connections/item_amex")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "connection_id": "item_amex"}
        assert mock_plaid_client.removed_tokens == ["access-amex"]
        assert get_connection_store(db).get_connections() == []

    def test_remove_survives_revoke_failure(self, client_for, db, connection):
        store_documents(db, connections=[connection])
        client = client_for(
            MockPlaidClient(failing_tokens={"access-amex"}, failure_type="connection")
        )

        response = client.delete("/api/plaid/connections/item_amex")

        assert response.status_code == 200
        assert get_connection_store(db).get_connections() == []

    def test_remove_unknown_connection(self, client):
        response = client.delete("/api/plaid/connections/missing")
        assert response.status_code == 404

    def test_rematch(self, client, db, connection, amex_card):
        store_documents(db, connections=[connection], cards=[amex_card])

        response = client.post("/api/plaid/connections/item_amex/match")

        assert response.status_code == 200
        assert response.json()["matched"][0]["linked_id"] == "card_gold"

    def test_rematch_unknown_connection(self, client):
        response = client.post("/api/plaid/connections/missing/match")
        assert response.status_code == 404


class TestRefresh:
    def test_refresh_connection(self, client, db, connection, amex_card):
        store_documents(db, connections=[connection], cards=[amex_card])

        response = client.post("/api/plaid/connections/item_amex/refresh")

        assert response.status_code == 200
        data = response.json()
        assert data["connection_id"] == "item_amex"
        assert data["accounts_updated"] == 4
        assert data["new_records"] == 2
        assert data["error"] is None

        card = next(c for c in LedgerStore(db).get_cards() if c.id == "card_gold")
        assert str(card.external_balance) == "512.34"

    def test_refresh_failure_is_reported_in_body(self, client_for, db, connection):
        store_documents(db, connections=[connection])
        client = client_for(MockPlaidClient(failing_tokens={"access-amex"}, failure_type="auth"))

        response = client.post("/api/plaid/connections/item_amex/refresh")

        assert response.status_code == 200
        error = response.json()["error"]
        assert error["category"] == "auth"
        assert error["connection_id"] == "item_amex"

    def test_refresh_unknown_connection(self, client):
        response = client.post("/api/plaid/connections/missing/refresh")
        assert response.status_code == 404

    def test_refresh_in_progress(self, client, db, connection):
        store_documents(db, connections=[connection])
        lock = RefreshService._lock_for("item_amex")
        lock.acquire()
        try:
            response = client.post("/api/plaid/connections/item_amex/refresh")
        finally:
            lock.release()

        assert response.status_code == 409

    def test_refresh_requires_configuration(self, client_for, db, connection):
        store_documents(db, connections=[connection])
        client = client_for(MockPlaidClient(should_fail=True))

        response = client.post("/api/plaid/connections/item_amex/refresh")

        assert response.status_code == 400

    def test_refresh_all(self, client, db, connection):
        chase = make_connection(
            connection_id="item_chase", institution_name="Chase", access_credential=None,
        )
        store_documents(db, connections=[connection, chase])

        response = client.post("/api/plaid/refresh")

        assert response.status_code == 200
        data = response.json()
        assert [r["connection_id"] for r in data] == ["item_amex", "item_chase"]
        assert data[0]["error"] is None
        assert data[1]["error"]["category"] == "auth"
