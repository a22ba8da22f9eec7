"""
Pytest configuration and shared fixtures for Spending Tracker tests.

This file is automatically loaded by pytest and provides:
    - In-memory SQLite database fixtures
    - Seeded payment accounts and a transaction factory
    - Fake classifier and fake text-generation collaborators
    - Reset of process-wide caches between tests

Author: Spending Tracker Team
"""

import os

# Must be set before config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["OPENAI_API_KEY"] = ""
os.environ["CLASSIFIER_RETRY_BACKOFF_SECONDS"] = "0"
os.environ["AUTH_BYPASS"] = "false"

import asyncio
import sys
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from database import init_db
from models import UserUpiAccount, UserCardAccount, UserBankAccount
from schemas import TransactionCreate
from services import categorizer
from services.cache import TTLCache
from services.category_store import CategoryStore, DatabaseCategorySource, catalog_cache
from services.classifier import ClassifierAdapter, CategorySuggestion
from services.errors import TextGenerationFailed
from services.observability import metrics
from services.repository import AccountRepository, TransactionRepository, transaction_cache

OWNER = "user_alice"
OTHER_OWNER = "user_bob"


# =============================================================================
# Shared State
# =============================================================================

@pytest.fixture(autouse=True)
def reset_shared_state():
    """Caches, metrics and the suggestion coordinator are process-wide."""
    catalog_cache.clear()
    transaction_cache.clear()
    metrics.reset()
    categorizer._coordinator = None
    yield
    categorizer._coordinator = None


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def engine():
    """Fresh in-memory database with the category catalog seeded."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def category_store(db_session):
    return CategoryStore(DatabaseCategorySource(db_session), cache=TTLCache(ttl_seconds=300))


@pytest.fixture
def repository(db_session):
    return TransactionRepository(db_session, cache=TTLCache(ttl_seconds=60))


# =============================================================================
# Accounts & Transactions
# =============================================================================

@pytest.fixture
def accounts(db_session):
    """One account of each kind for OWNER, plus a UPI account for OTHER_OWNER."""
    repo = AccountRepository(db_session)
    return {
        "upi": repo.add(OWNER, UserUpiAccount, upi_id="alice@okhdfcbank", display_name="Alice HDFC"),
        "card": repo.add(OWNER, UserCardAccount, card_holder_name="Alice", card_last4="4242", card_type="VISA"),
        "bank": repo.add(OWNER, UserBankAccount, account_holder_name="Alice", bank_name="HDFC Bank",
                         account_number_last4="1234"),
        "other_upi": repo.add(OTHER_OWNER, UserUpiAccount, upi_id="bob@ybl", display_name="Bob"),
    }


@pytest.fixture
def create_txn(repository, accounts):
    """
    Factory: create_txn(amount, payee="Swiggy", kind="UPI", flow="DEBIT",
    timestamp=None, owner=OWNER, notes=None) -> Transaction
    """
    def _create(amount, payee="Swiggy", kind="UPI", flow="DEBIT",
                timestamp: Optional[datetime] = None, owner: str = OWNER, notes: str = None):
        payload = {
            "amount": Decimal(str(amount)),
            "transaction_type": kind,
            "flow": flow,
            "timestamp": timestamp,
            "notes": notes,
        }
        if kind == "UPI":
            payload["payer_account_id"] = accounts["other_upi" if owner == OTHER_OWNER else "upi"].id
            payload["upi_details"] = {"payee_name": payee, "payee_upi_id": "merchant@ybl"}
        elif kind == "CARD":
            payload["payer_account_id"] = accounts["card"].id
            payload["card_details"] = {"payee_merchant_name": payee}
        else:
            payload["payer_account_id"] = accounts["bank"].id
            payload["net_banking_details"] = {
                "payee_name": payee, "payee_bank_name": "ICICI Bank", "reference_id": "REF123",
            }
        return repository.create(owner, TransactionCreate(**payload))

    return _create


@dataclass
class MockTransaction:
    """Plain stand-in for the aggregation engine's inputs."""
    amount: Decimal
    category: Optional[str]
    timestamp: datetime
    flow: str = "DEBIT"


# =============================================================================
# Collaborator Fakes
# =============================================================================

class FakeClassifier(ClassifierAdapter):
    """
    Classifier that replays scripted outcomes.

    Each outcome is a CategorySuggestion (returned) or an exception (raised).
    The last outcome repeats once the script is exhausted.
    """

    name = "fake"

    def __init__(self, *outcomes, delay: float = 0.0):
        self.outcomes = list(outcomes) or [CategorySuggestion("Food & Dining", 0.9)]
        self.delay = delay
        self.calls = 0

    async def predict(self, features):
        index = min(self.calls, len(self.outcomes) - 1)
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes[index]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def check_connection(self) -> bool:
        return True


class FakeAIService:
    """Text-generation stand-in: returns `tip` or raises TextGenerationFailed."""

    def __init__(self, tip: str = "Keep food delivery under ₹3,000 next month.", fail: bool = False):
        self.tip = tip
        self.fail = fail
        self.calls = []

    async def generate_expenditure_tip(self, forecast, category, as_of, period="month"):
        self.calls.append({"forecast": list(forecast), "category": category, "as_of": as_of, "period": period})
        if self.fail:
            raise TextGenerationFailed("model unavailable")
        return self.tip

    async def check_connection(self) -> bool:
        return not self.fail


# =============================================================================
# Test Utilities
# =============================================================================

def assert_valid_confidence(confidence: float) -> None:
    """Assert that confidence is in valid range."""
    assert 0 <= confidence <= 1, f"Invalid confidence: {confidence}"
