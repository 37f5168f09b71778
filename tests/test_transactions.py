"""
Tests for transaction read and recurring-occurrence endpoints.

Tests cover:
- Date-window listing (validation, response shape)
- Single transaction retrieval
- Rule lookup for a transaction
- Scoped edits: scope validation, conflicts, not found
- Skipping an occurrence
- Authentication
"""

import pytest
from pydantic import ValidationError
from fastapi.testclient import TestClient
from unittest.mock import patch, MagicMock

from ledgerly.main import app
from ledgerly.auth.dependencies import get_authenticated_user, AuthenticatedUser
from ledgerly.config import settings
from ledgerly.errors import (
    DateConflictError,
    InvalidRuleError,
    NotFoundError,
    StoreError,
)
from ledgerly.schemas.recurring_transactions import RecurringRuleResponse, ThisAndFutureEdit, ThisOnlyEdit
from ledgerly.schemas.transactions import TransactionResponse

client = TestClient(app)


async def mock_get_authenticated_user_dependency():
    """Mock dependency that returns test AuthenticatedUser."""
    return AuthenticatedUser(
        user_id="test-user-id",
        access_token="test-access-token"
    )


@pytest.fixture
def mock_auth():
    """Override get_authenticated_user dependency."""
    app.dependency_overrides[get_authenticated_user] = mock_get_authenticated_user_dependency
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def mock_transaction():
    """Materialized recurring transaction row."""
    return {
        "transaction_id": "rtx_rule-123_2024-02-01",
        "user_id": "test-user-id",
        "type": "expense",
        "amount": 1200.0,
        "currency": "USD",
        "category_id": "category-789",
        "account_id": "account-456",
        "title": "Rent",
        "description": None,
        "transaction_date": "2024-02-01",
        "recurring_rule_id": "rule-123",
        "recurrence_occurrence_date": "2024-02-01",
        "is_recurring_skipped": False,
        "created_at": "2024-01-15T10:15:00Z",
        "updated_at": "2024-01-15T10:15:00Z"
    }


@pytest.fixture
def mock_rule():
    return {
        "id": "rule-123",
        "user_id": "test-user-id",
        "type": "expense",
        "amount": 1200.0,
        "currency": "USD",
        "category_id": "category-789",
        "account_id": "account-456",
        "title": "Rent",
        "description": None,
        "frequency": "monthly",
        "interval": 1,
        "start_date": "2024-01-01",
        "end_date": None,
        "timezone": "UTC",
        "is_active": True,
        "last_generated_date": "2024-02-01",
        "created_at": "2024-01-01T09:00:00Z",
        "updated_at": "2024-01-01T09:00:00Z"
    }


@pytest.fixture
def mock_get_supabase_client():
    """Mock get_supabase_client to return a fake client."""
    with patch("ledgerly.routes.transactions.get_supabase_client") as mock:
        mock_supabase_client = MagicMock()
        mock.return_value = mock_supabase_client
        yield mock


class TestListTransactions:
    """Tests for GET /transactions"""

    @patch("ledgerly.routes.transactions.get_transactions_in_date_range")
    def test_list_transactions_success(self, mock_get_range, mock_auth, mock_get_supabase_client, mock_transaction):
        mock_get_range.return_value = [mock_transaction]

        response = client.get("/transactions", params={"start_date": "2024-02-01", "end_date": "2024-02-29"})

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["start_date"] == "2024-02-01"
        assert data["end_date"] == "2024-02-29"
        txn = data["transactions"][0]
        assert txn["transaction_id"] == "rtx_rule-123_2024-02-01"
        assert txn["recurring_rule_id"] == "rule-123"
        assert txn["recurrence_occurrence_date"] == "2024-02-01"

        mock_get_supabase_client.assert_called_once_with("test-access-token")
        kwargs = mock_get_range.call_args.kwargs
        assert kwargs["user_id"] == "test-user-id"
        assert kwargs["start_date"].isoformat() == "2024-02-01"

    @patch("ledgerly.routes.transactions.get_transactions_in_date_range")
    def test_list_transactions_reversed_window(self, mock_get_range, mock_auth, mock_get_supabase_client):
        response = client.get("/transactions", params={"start_date": "2024-03-01", "end_date": "2024-02-01"})

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "validation_error"
        mock_get_range.assert_not_called()

    @patch("ledgerly.routes.transactions.get_transactions_in_date_range")
    def test_list_transactions_single_day_window(self, mock_get_range, mock_auth, mock_get_supabase_client):
        mock_get_range.return_value = []

        with patch.object(settings, "MAX_MATERIALIZE_WINDOW_DAYS", 1):
            response = client.get("/transactions", params={"start_date": "2024-02-01", "end_date": "2024-02-01"})

        assert response.status_code == 200
        assert response.json()["count"] == 0

    @patch("ledgerly.routes.transactions.get_transactions_in_date_range")
    def test_list_transactions_window_too_long(self, mock_get_range, mock_auth, mock_get_supabase_client):
        with patch.object(settings, "MAX_MATERIALIZE_WINDOW_DAYS", 1):
            response = client.get("/transactions", params={"start_date": "2024-02-01", "end_date": "2024-02-02"})

        assert response.status_code == 400
        mock_get_range.assert_not_called()

    @patch("ledgerly.routes.transactions.get_transactions_in_date_range")
    def test_list_transactions_missing_window(self, mock_get_range, mock_auth, mock_get_supabase_client):
        response = client.get("/transactions", params={"start_date": "2024-03-01"})

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    @patch("ledgerly.routes.transactions.get_transactions_in_date_range")
    def test_list_transactions_corrupt_amount(self, mock_get_range, mock_auth, mock_get_supabase_client, mock_transaction):
        mock_get_range.return_value = [{**mock_transaction, "amount": None}]

        response = client.get("/transactions", params={"start_date": "2024-02-01", "end_date": "2024-02-29"})

        assert response.status_code == 500
        assert response.json()["detail"]["error"] == "fetch_error"

    @patch("ledgerly.routes.transactions.get_transactions_in_date_range")
    def test_list_transactions_store_error(self, mock_get_range, mock_auth, mock_get_supabase_client):
        mock_get_range.side_effect = StoreError("relation does not exist", code="42P01")

        response = client.get("/transactions", params={"start_date": "2024-02-01", "end_date": "2024-02-29"})

        assert response.status_code == 500
        detail = response.json()["detail"]
        assert detail["error"] == "fetch_error"
        assert "relation" not in detail["details"]


class TestGetTransaction:
    """Tests for GET /transactions/{transaction_id}"""

    @patch("ledgerly.routes.transactions.get_transaction_by_id")
    def test_get_transaction_success(self, mock_get_txn, mock_auth, mock_get_supabase_client, mock_transaction):
        mock_get_txn.return_value = mock_transaction

        response = client.get("/transactions/rtx_rule-123_2024-02-01")

        assert response.status_code == 200
        assert response.json()["title"] == "Rent"

    @patch("ledgerly.routes.transactions.get_transaction_by_id")
    def test_get_transaction_corrupt_amount(self, mock_get_txn, mock_auth, mock_get_supabase_client, mock_transaction):
        mock_get_txn.return_value = {**mock_transaction, "amount": "not-a-number"}

        response = client.get("/transactions/rtx_rule-123_2024-02-01")

        assert response.status_code == 500
        assert response.json()["detail"]["error"] == "fetch_error"

    @patch("ledgerly.routes.transactions.get_transaction_by_id")
    def test_get_transaction_not_found(self, mock_get_txn, mock_auth, mock_get_supabase_client):
        mock_get_txn.return_value = None

        response = client.get("/transactions/nonexistent-id")

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "not_found"


class TestGetTransactionRule:
    """Tests for GET /transactions/{transaction_id}/recurring-rule"""

    @patch("ledgerly.routes.transactions.get_rule_for_transaction")
    def test_rule_found(self, mock_get_rule, mock_auth, mock_get_supabase_client, mock_rule):
        mock_get_rule.return_value = mock_rule

        response = client.get("/transactions/rtx_rule-123_2024-02-01/recurring-rule")

        assert response.status_code == 200
        data = response.json()
        assert data["transaction_id"] == "rtx_rule-123_2024-02-01"
        assert data["recurring_rule"]["id"] == "rule-123"
        assert data["recurring_rule"]["frequency"] == "monthly"

    @patch("ledgerly.routes.transactions.get_rule_for_transaction")
    def test_manual_transaction_has_null_rule(self, mock_get_rule, mock_auth, mock_get_supabase_client):
        mock_get_rule.return_value = None

        response = client.get("/transactions/txn-manual/recurring-rule")

        assert response.status_code == 200
        assert response.json()["recurring_rule"] is None


class TestUpdateRecurrence:
    """Tests for PATCH /transactions/{transaction_id}/recurrence"""

    @patch("ledgerly.routes.transactions.update_recurring_transaction")
    def test_this_only_success(self, mock_update, mock_auth, mock_get_supabase_client):
        mock_update.return_value = None

        response = client.patch(
            "/transactions/rtx_rule-123_2024-02-01/recurrence",
            json={"scope": "this-only", "changes": {"amount": 950.0, "transaction_date": "2024-02-03"}}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "UPDATED"
        assert data["scope"] == "this-only"

        edit = mock_update.call_args.kwargs["edit"]
        assert isinstance(edit, ThisOnlyEdit)
        assert edit.template_changes() == {"amount": 950.0}
        assert edit.transaction_date.isoformat() == "2024-02-03"

    @patch("ledgerly.routes.transactions.update_recurring_transaction")
    def test_this_and_future_passes_schedule(self, mock_update, mock_auth, mock_get_supabase_client):
        response = client.patch(
            "/transactions/rtx_rule-123_2024-02-01/recurrence",
            json={"scope": "this-and-future", "changes": {"interval": 2}}
        )

        assert response.status_code == 200
        edit = mock_update.call_args.kwargs["edit"]
        assert isinstance(edit, ThisAndFutureEdit)
        assert edit.schedule_changes() == {"interval": 2}

    @patch("ledgerly.routes.transactions.update_recurring_transaction")
    def test_schedule_field_with_this_only_rejected(self, mock_update, mock_auth, mock_get_supabase_client):
        response = client.patch(
            "/transactions/rtx_rule-123_2024-02-01/recurrence",
            json={"scope": "this-only", "changes": {"frequency": "weekly"}}
        )

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "invalid_scope"
        mock_update.assert_not_called()

    @patch("ledgerly.routes.transactions.update_recurring_transaction")
    def test_transaction_date_with_rule_only_rejected(self, mock_update, mock_auth, mock_get_supabase_client):
        response = client.patch(
            "/transactions/rtx_rule-123_2024-02-01/recurrence",
            json={"scope": "rule-only", "changes": {"transaction_date": "2024-02-03"}}
        )

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "invalid_scope"

    @patch("ledgerly.routes.transactions.update_recurring_transaction")
    def test_unknown_scope_rejected(self, mock_update, mock_auth, mock_get_supabase_client):
        response = client.patch(
            "/transactions/rtx_rule-123_2024-02-01/recurrence",
            json={"scope": "everything", "changes": {"amount": 1}}
        )

        assert response.status_code == 422
        mock_update.assert_not_called()

    @patch("ledgerly.routes.transactions.update_recurring_transaction")
    def test_invalid_value_rejected(self, mock_update, mock_auth, mock_get_supabase_client):
        response = client.patch(
            "/transactions/rtx_rule-123_2024-02-01/recurrence",
            json={"scope": "rule-only", "changes": {"interval": 0}}
        )

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["error"] == "validation_error"
        assert detail["details"][0]["loc"][-1] == "interval"

    @patch("ledgerly.routes.transactions.update_recurring_transaction")
    def test_date_conflict(self, mock_update, mock_auth, mock_get_supabase_client):
        mock_update.side_effect = DateConflictError("rule-123", "2024-03-01")

        response = client.patch(
            "/transactions/rtx_rule-123_2024-02-01/recurrence",
            json={"scope": "this-only", "changes": {"transaction_date": "2024-03-01"}}
        )

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["error"] == "date_conflict"
        assert "2024-03-01" in detail["details"]

    @patch("ledgerly.routes.transactions.update_recurring_transaction")
    def test_not_found(self, mock_update, mock_auth, mock_get_supabase_client):
        mock_update.side_effect = NotFoundError("Transaction missing not found")

        response = client.patch(
            "/transactions/missing/recurrence",
            json={"scope": "rule-only", "changes": {"amount": 10}}
        )

        assert response.status_code == 404

    @patch("ledgerly.routes.transactions.update_recurring_transaction")
    def test_invalid_rule(self, mock_update, mock_auth, mock_get_supabase_client):
        mock_update.side_effect = InvalidRuleError("end_date 2023-01-01 is before start_date 2024-01-01")

        response = client.patch(
            "/transactions/rtx_rule-123_2024-02-01/recurrence",
            json={"scope": "rule-only", "changes": {"end_date": "2023-01-01"}}
        )

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "invalid_rule"


class TestSkipOccurrence:
    """Tests for POST /transactions/{transaction_id}/skip"""

    @patch("ledgerly.routes.transactions.skip_occurrence")
    def test_skip_success(self, mock_skip, mock_auth, mock_get_supabase_client):
        response = client.post("/transactions/rtx_rule-123_2024-02-01/skip")

        assert response.status_code == 200
        assert response.json()["status"] == "SKIPPED"
        assert mock_skip.call_args.kwargs["transaction_id"] == "rtx_rule-123_2024-02-01"

    @patch("ledgerly.routes.transactions.skip_occurrence")
    def test_skip_manual_transaction(self, mock_skip, mock_auth, mock_get_supabase_client):
        mock_skip.side_effect = NotFoundError("Transaction txn-1 is not a recurring transaction")

        response = client.post("/transactions/txn-1/skip")

        assert response.status_code == 404


class TestAuthentication:

    def test_missing_token_returns_401(self):
        response = client.get("/transactions", params={"start_date": "2024-02-01", "end_date": "2024-02-29"})

        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "unauthorized"

    def test_malformed_header_returns_401(self):
        response = client.post(
            "/transactions/rtx_rule-123_2024-02-01/skip",
            headers={"Authorization": "Token abc"}
        )

        assert response.status_code == 401


class TestFromRow:

    def test_numeric_string_amount_is_parsed(self, mock_transaction):
        txn = TransactionResponse.from_row({**mock_transaction, "amount": "12.50"})
        assert txn.amount == 12.5

    def test_unparseable_amount_is_rejected(self, mock_transaction):
        with pytest.raises(ValidationError):
            TransactionResponse.from_row({**mock_transaction, "amount": "twelve"})

    def test_unparseable_rule_amount_is_rejected(self, mock_rule):
        with pytest.raises(ValidationError):
            RecurringRuleResponse.from_row({**mock_rule, "amount": "n/a"})
