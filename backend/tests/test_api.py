"""
Test Module: test_api.py
Description: End-to-end tests of the HTTP surface with FastAPI's TestClient.

Dependencies are overridden with an in-memory database, a scripted
classifier and a fake text-generation service.

Author: Spending Tracker Team
"""

import pytest
from decimal import Decimal

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fastapi.testclient import TestClient

from conftest import FakeAIService, FakeClassifier, OWNER
import main
from auth import get_current_user
from database import get_db
from services.classifier import CategorySuggestion
from services.errors import ClassifierTimeout

FOOD = CategorySuggestion("Food & Dining", 0.88)


@pytest.fixture
def classifier():
    return FakeClassifier(FOOD)


@pytest.fixture
def ai_service():
    return FakeAIService(tip="Set a weekly food budget.")


@pytest.fixture
def client(session_factory, classifier, ai_service, monkeypatch):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    monkeypatch.setattr(main.config, "AUTO_CATEGORIZE_ON_CREATE", False)
    main.suggestion_rate_limiter.reset()

    main.app.dependency_overrides[get_db] = override_get_db
    main.app.dependency_overrides[get_current_user] = lambda: OWNER
    main.app.dependency_overrides[main.get_classifier] = lambda: classifier
    main.app.dependency_overrides[main.get_ai_service] = lambda: ai_service
    main.app.dependency_overrides[main.get_session_factory] = lambda: session_factory

    yield TestClient(main.app)

    main.app.dependency_overrides.clear()


@pytest.fixture
def upi_account(client):
    response = client.post("/accounts/upi", json={"upi_id": "alice@okhdfcbank", "display_name": "Alice"})
    assert response.status_code == 201
    return response.json()


def new_upi_txn(client, account, amount="250.00", payee="Swiggy", timestamp=None):
    body = {
        "amount": amount,
        "transaction_type": "UPI",
        "payer_account_id": account["id"],
        "upi_details": {"payee_name": payee, "payee_upi_id": "merchant@ybl"},
    }
    if timestamp:
        body["timestamp"] = timestamp
    response = client.post("/transactions", json=body)
    assert response.status_code == 201, response.text
    return response.json()


# =============================================================================
# System
# =============================================================================

class TestSystem:

    def test_health(self, client):
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["classifier"] == "connected"

    def test_categories(self, client):
        categories = client.get("/categories").json()

        assert categories[0] == "Food & Dining"
        assert "Uncategorized" not in categories

    def test_metrics(self, client):
        assert "counters" in client.get("/metrics").json()


# =============================================================================
# Accounts & Transactions
# =============================================================================

class TestTransactions:

    def test_create_and_fetch(self, client, upi_account):
        created = new_upi_txn(client, upi_account)

        fetched = client.get(f"/transactions/{created['id']}").json()

        assert fetched["category"] is None
        assert fetched["upi_details"]["payee_name"] == "Swiggy"
        assert Decimal(fetched["amount"]) == Decimal("250.00")

    def test_accounts_listed(self, client, upi_account):
        body = client.get("/accounts").json()

        assert [a["id"] for a in body["upi_accounts"]] == [upi_account["id"]]
        assert body["card_accounts"] == []

    def test_non_positive_amount_rejected(self, client, upi_account):
        response = client.post("/transactions", json={
            "amount": "0", "transaction_type": "UPI", "payer_account_id": upi_account["id"],
            "upi_details": {"payee_name": "X", "payee_upi_id": "x@ybl"},
        })

        assert response.status_code == 422

    def test_mismatched_detail_block_is_400(self, client, upi_account):
        response = client.post("/transactions", json={
            "amount": "10", "transaction_type": "CARD", "payer_account_id": upi_account["id"],
            "upi_details": {"payee_name": "X", "payee_upi_id": "x@ybl"},
        })

        assert response.status_code == 400

    def test_unknown_transaction_is_404(self, client):
        assert client.get("/transactions/does-not-exist").status_code == 404

    def test_list_newest_first(self, client, upi_account):
        new_upi_txn(client, upi_account, timestamp="2024-01-01T10:00:00")
        latest = new_upi_txn(client, upi_account, timestamp="2024-02-01T10:00:00")

        listed = client.get("/transactions").json()

        assert listed[0]["id"] == latest["id"]

    def test_create_schedules_auto_categorization(self, client, upi_account, monkeypatch):
        monkeypatch.setattr(main.config, "AUTO_CATEGORIZE_ON_CREATE", True)

        created = new_upi_txn(client, upi_account)

        assert client.get(f"/transactions/{created['id']}").json()["category"] == "Food & Dining"


# =============================================================================
# Categorization
# =============================================================================

class TestCategorization:

    def test_suggest_then_confirm(self, client, upi_account):
        txn = new_upi_txn(client, upi_account)

        suggestion = client.get(f"/transactions/{txn['id']}/suggestion").json()
        confirmed = client.post(f"/transactions/{txn['id']}/suggestion/confirm").json()

        assert suggestion == {"category": "Food & Dining", "confidence": 0.88}
        assert confirmed["category"] == "Food & Dining"
        assert confirmed["category_source"] == "ai_confirmed"

    def test_classifier_timeout_returns_null(self, client, upi_account, classifier):
        classifier.outcomes = [ClassifierTimeout("slow")]
        txn = new_upi_txn(client, upi_account)

        response = client.get(f"/transactions/{txn['id']}/suggestion")

        assert response.status_code == 200
        assert response.json() is None
        assert client.get(f"/transactions/{txn['id']}").json()["category"] is None

    def test_confirm_without_suggestion_is_400(self, client, upi_account):
        txn = new_upi_txn(client, upi_account)

        assert client.post(f"/transactions/{txn['id']}/suggestion/confirm").status_code == 400

    def test_set_category_and_invalid_category(self, client, upi_account):
        txn = new_upi_txn(client, upi_account)

        ok = client.put(f"/transactions/{txn['id']}/category", json={"category": "Groceries"})
        bad = client.put(f"/transactions/{txn['id']}/category", json={"category": "Error: Prediction Failed"})

        assert ok.status_code == 200 and ok.json()["category"] == "Groceries"
        assert bad.status_code == 400
        assert client.get(f"/transactions/{txn['id']}").json()["category"] == "Groceries"

    def test_bulk_categorize(self, client, upi_account):
        new_upi_txn(client, upi_account)
        new_upi_txn(client, upi_account)

        assert client.post("/transactions/categorize").json() == {"categorized": 2}

    def test_suggestions_are_rate_limited(self, client, upi_account, monkeypatch):
        monkeypatch.setattr(main.suggestion_rate_limiter, "max_requests", 1)
        txn = new_upi_txn(client, upi_account)

        assert client.get(f"/transactions/{txn['id']}/suggestion").status_code == 200
        assert client.get(f"/transactions/{txn['id']}/suggestion").status_code == 429


# =============================================================================
# Analytics
# =============================================================================

class TestAnalytics:

    @pytest.fixture
    def spending(self, client, upi_account):
        food = new_upi_txn(client, upi_account, amount="450", timestamp="2024-01-05T09:00:00")
        new_upi_txn(client, upi_account, amount="150", timestamp="2024-01-20T09:00:00")
        new_upi_txn(client, upi_account, amount="300", payee="Uber", timestamp="2024-02-03T09:00:00")
        client.put(f"/transactions/{food['id']}/category", json={"category": "Food & Dining"})

    def test_category_spending(self, client, spending):
        body = client.get("/analytics/category-spending").json()

        assert [(row["category"], Decimal(row["total_amount"])) for row in body] == [
            ("Food & Dining", Decimal("450")), ("Uncategorized", Decimal("450")),
        ]
        assert [row["percentage"] for row in body] == [50, 50]

    def test_category_spending_with_range(self, client, spending):
        body = client.get("/analytics/category-spending", params={
            "date_from": "2024-01-01T00:00:00", "date_to": "2024-01-31T23:59:59",
        }).json()

        assert [(row["category"], Decimal(row["total_amount"])) for row in body] == [
            ("Food & Dining", Decimal("450")), ("Uncategorized", Decimal("150")),
        ]

    def test_inverted_range_is_400(self, client, spending):
        response = client.get("/analytics/category-spending", params={
            "date_from": "2024-02-01T00:00:00", "date_to": "2024-01-01T00:00:00",
        })

        assert response.status_code == 400

    def test_flow_summary(self, client, spending):
        body = client.get("/analytics/flow-summary").json()

        assert Decimal(body["total_debit"]) == Decimal("900")
        assert Decimal(body["total_credit"]) == Decimal("0")
        assert body["transaction_count"] == 3

    def test_period_totals(self, client, spending):
        body = client.get("/analytics/period-totals", params={"period": "month"}).json()

        assert [(row["period"], row["total"]) for row in body] == [("2024-01", 600.0), ("2024-02", 300.0)]

    def test_period_totals_unknown_category_is_400(self, client, spending):
        assert client.get("/analytics/period-totals", params={"category": "Crypto"}).status_code == 400

    def test_insight(self, client, spending, ai_service):
        body = client.get("/analytics/insight", params={"periods_ahead": 2, "category": "Food & Dining"}).json()

        assert body["periods_covered"] == 2
        assert len(body["forecasted_spending"]) == 2
        assert all(v >= 0 for v in body["forecasted_spending"])
        assert body["category_context"] == "Food & Dining"
        assert body["expenditure_tip"] == "Set a weekly food budget."

    def test_insight_without_tip(self, client, spending, ai_service):
        ai_service.fail = True

        body = client.get("/analytics/insight", params={"periods_ahead": 3}).json()

        assert len(body["forecasted_spending"]) == 3
        assert body["expenditure_tip"] is None

    def test_insight_invalid_horizon_is_400(self, client, spending):
        assert client.get("/analytics/insight", params={"periods_ahead": 0}).status_code == 400
