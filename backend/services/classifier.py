"""
Module: classifier.py
Description: Classifier adapters that turn a transaction into a category suggestion.

Backends:
    1. LocalModelClassifier: keyword rules first, then a TF-IDF + logistic
       regression pipeline trained by train_models.py and loaded with joblib
    2. RemoteClassifier: HTTP prediction service reached with httpx

Both ignore any existing category on the transaction and predict fresh.
Failures are raised as distinct ClassifierFailure subclasses; nothing is
retried here (the caller decides).

Author: Spending Tracker Team
"""

import asyncio
import re
import threading
from dataclasses import dataclass, asdict
from datetime import datetime
from pathlib import Path
from typing import Optional

import httpx
import joblib
import numpy as np

import config
from models import TransactionType
from .errors import (
    ClassifierTimeout, ModelUnavailable, PredictionFailed,
    PreprocessingFailed, TransactionNotFound,
)
from .observability import logger, timed

MODEL_FILENAME = "category_model.joblib"

# Sentinel strings some prediction services return in place of a category
ERROR_SENTINELS = {
    "Error: Artifacts Unavailable": ModelUnavailable,
    "Error: Preprocessing Failed": PreprocessingFailed,
    "Error: Prediction Failed": PredictionFailed,
}


@dataclass(frozen=True)
class CategorySuggestion:
    """Unpersisted, classifier-proposed category."""
    category: str
    confidence: float


@dataclass(frozen=True)
class ClassifierInput:
    """Feature-relevant fields of a transaction, detached from the ORM."""
    transaction_id: str
    amount: float
    flow: str
    transaction_type: str
    payee: str
    payee_handle: str
    notes: str
    timestamp: Optional[datetime] = None

    @property
    def text(self) -> str:
        parts = [self.payee, self.payee_handle, self.notes]
        return " ".join(p for p in parts if p).strip()

    def to_payload(self) -> dict:
        payload = asdict(self)
        payload["timestamp"] = self.timestamp.isoformat() if self.timestamp else None
        return payload


def extract_features(transaction) -> ClassifierInput:
    """
    Build classifier input from a Transaction (ORM row or snapshot).

    Raises:
        PreprocessingFailed: if the transaction carries nothing to classify.
    """
    try:
        amount = float(transaction.amount)
        transaction_type = TransactionType(transaction.transaction_type)
        details = {
            TransactionType.UPI: transaction.upi_details,
            TransactionType.CARD: transaction.card_details,
            TransactionType.NET_BANKING: transaction.net_banking_details,
        }[transaction_type]
    except (TypeError, ValueError, AttributeError, KeyError) as e:
        raise PreprocessingFailed(f"Malformed transaction: {e}") from e

    if details is None:
        raise PreprocessingFailed(f"{transaction_type.value} transaction has no detail record")
    if amount <= 0:
        raise PreprocessingFailed("Amount must be positive")

    if transaction_type == TransactionType.CARD:
        payee, handle = details.payee_merchant_name, ""
    elif transaction_type == TransactionType.UPI:
        payee, handle = details.payee_name, details.payee_upi_id
    else:
        payee, handle = details.payee_name, details.payee_bank_name

    features = ClassifierInput(
        transaction_id=str(transaction.id),
        amount=amount,
        flow=getattr(transaction.flow, "value", str(transaction.flow)),
        transaction_type=transaction_type.value,
        payee=(payee or "").strip(),
        payee_handle=(handle or "").strip(),
        notes=(transaction.notes or "").strip(),
        timestamp=transaction.timestamp,
    )
    if not features.text:
        raise PreprocessingFailed("No payee or notes text to classify")
    return features


def ensure_usable(suggestion: CategorySuggestion, catalog: list[str]) -> CategorySuggestion:
    """Reject sentinels, out-of-catalog categories and out-of-range confidences."""
    category = suggestion.category
    if category in ERROR_SENTINELS:
        raise ERROR_SENTINELS[category](category)
    if not category or category.startswith("Error:"):
        raise PredictionFailed(category or "empty category")
    if category not in catalog:
        raise PredictionFailed(f"Predicted category '{category}' is not in the catalog")
    if not 0.0 <= suggestion.confidence <= 1.0:
        raise PredictionFailed(f"Confidence {suggestion.confidence} outside [0, 1]")
    return suggestion


class ClassifierAdapter:
    """Common interface: `suggest(transaction)` -> CategorySuggestion or raise."""

    name = "base"

    async def suggest(self, transaction) -> CategorySuggestion:
        return await self.predict(extract_features(transaction))

    async def predict(self, features: ClassifierInput) -> CategorySuggestion:
        raise NotImplementedError

    async def check_connection(self) -> bool:
        raise NotImplementedError


# =============================================================================
# Local (rules + trained pipeline)
# =============================================================================

class LocalModelClassifier(ClassifierAdapter):
    """Keyword rules with a scikit-learn text pipeline behind them."""

    name = "local"
    RULE_CONFIDENCE = 0.95

    # Merchant/keyword patterns common in UPI, card and net-banking payee text
    KEYWORD_RULES = {
        r"SWIGGY|ZOMATO|DOMINO|PIZZA|MCDONALD|KFC|STARBUCKS|CAFE|COFFEE|RESTAURANT|DHABA|BIRYANI|BURGER": "Food & Dining",
        r"BIGBASKET|BLINKIT|ZEPTO|DMART|GROFERS|GROCERY|KIRANA|SUPERMARKET|JIOMART|NATURE'?S\s*BASKET": "Groceries",
        r"UBER|OLA\b|RAPIDO|METRO|IRCTC\s*SUBURBAN|FASTAG|PETROL|FUEL|INDIAN\s*OIL|HPCL|BPCL|PARKING": "Transportation",
        r"AMAZON|FLIPKART|MYNTRA|AJIO|MEESHO|NYKAA|CROMA|RELIANCE\s*DIGITAL|DECATHLON": "Shopping",
        r"ELECTRICITY|BESCOM|TATA\s*POWER|AIRTEL|JIO\b|VODAFONE|\bVI\b|BROADBAND|WATER\s*BILL|GAS\s*BILL|DTH|RECHARGE": "Bills & Utilities",
        r"\bRENT\b|LANDLORD|NOBROKER|MAINTENANCE|SOCIETY": "Rent & Housing",
        r"NETFLIX|HOTSTAR|SPOTIFY|PRIME\s*VIDEO|BOOKMYSHOW|PVR|INOX|GAMING|CINEMA": "Entertainment",
        r"APOLLO|PHARM|MEDPLUS|1MG|PRACTO|HOSPITAL|CLINIC|DIAGNOSTIC|CULT\.?FIT|GYM": "Health & Fitness",
        r"MAKEMYTRIP|GOIBIBO|CLEARTRIP|INDIGO|AIR\s*INDIA|VISTARA|OYO|IRCTC|HOTEL|REDBUS": "Travel",
        r"BYJU|UNACADEMY|COURSERA|UDEMY|SCHOOL|COLLEGE|TUITION|FEES": "Education",
        r"SALON|SPA\b|URBAN\s*COMPANY|BARBER|PARLOUR": "Personal Care",
        r"ZERODHA|GROWW|MUTUAL\s*FUND|\bSIP\b|UPSTOX|\bNPS\b|\bPPF\b": "Investments",
        r"SALARY|PAYROLL|STIPEND|INTEREST\s*CREDIT|DIVIDEND|REFUND|CASHBACK": "Salary & Income",
        r"SELF\s*TRANSFER|\bNEFT\b|\bIMPS\b|\bRTGS\b|FUND\s*TRANSFER": "Transfers",
    }

    def __init__(self, model_dir: Path = None, timeout: float = None, pipeline=None):
        self.model_dir = Path(model_dir or config.MODEL_DIR)
        self.timeout = timeout or config.CLASSIFIER_TIMEOUT_SECONDS
        self._pipeline = pipeline
        self._load_attempted = pipeline is not None
        self._load_lock = threading.Lock()
        self._compiled_rules = [(re.compile(p), c) for p, c in self.KEYWORD_RULES.items()]

    @property
    def pipeline(self):
        """Lazy-load the trained pipeline; None when artifacts are missing."""
        if self._load_attempted:
            return self._pipeline
        # Worker threads wait for the first load instead of seeing a half-done one
        with self._load_lock:
            if not self._load_attempted:
                self._pipeline = self._load_pipeline()
                self._load_attempted = True
        return self._pipeline

    def _load_pipeline(self):
        model_path = self.model_dir / MODEL_FILENAME
        if not model_path.exists():
            logger.warning("Category model not found; rules only", path=str(model_path))
            return None
        try:
            pipeline = joblib.load(model_path)
        except Exception as e:
            logger.error("Category model failed to load", path=str(model_path), error=str(e))
            return None
        logger.info("Category model loaded", path=str(model_path))
        return pipeline

    def try_rules(self, text: str) -> Optional[CategorySuggestion]:
        upper = text.upper()
        for pattern, category in self._compiled_rules:
            if pattern.search(upper):
                return CategorySuggestion(category, self.RULE_CONFIDENCE)
        return None

    @timed("classifier.local")
    async def predict(self, features: ClassifierInput) -> CategorySuggestion:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._predict_sync, features), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise ClassifierTimeout(f"Local prediction exceeded {self.timeout:.1f}s") from e

    def _predict_sync(self, features: ClassifierInput) -> CategorySuggestion:
        ruled = self.try_rules(features.text)
        if ruled is not None:
            return ruled

        pipeline = self.pipeline
        if pipeline is None:
            raise ModelUnavailable("Classifier artifacts not loaded")

        try:
            probabilities = pipeline.predict_proba([features.text.lower()])[0]
        except Exception as e:
            raise PredictionFailed(f"Model prediction error: {e}") from e

        if len(probabilities) == 0 or not np.all(np.isfinite(probabilities)):
            raise PredictionFailed("Model returned no usable probabilities")

        best = int(np.argmax(probabilities))
        return CategorySuggestion(
            category=str(pipeline.classes_[best]),
            confidence=round(float(probabilities[best]), 4),
        )

    async def check_connection(self) -> bool:
        return self.pipeline is not None


# =============================================================================
# Remote prediction service
# =============================================================================

class RemoteClassifier(ClassifierAdapter):
    """
    Calls `POST {base_url}/predict` with the feature payload and expects
    `{"category": str, "confidence": float}`.
    """

    name = "remote"

    STATUS_FAILURES = {
        404: TransactionNotFound,
        422: PreprocessingFailed,
        503: ModelUnavailable,
    }

    def __init__(self, base_url: str = None, timeout: float = None,
                 transport: httpx.AsyncBaseTransport = None):
        self.base_url = (base_url or config.CLASSIFIER_URL).rstrip("/")
        self.timeout = min(timeout or config.CLASSIFIER_TIMEOUT_SECONDS, 10.0)
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    @timed("classifier.remote")
    async def predict(self, features: ClassifierInput) -> CategorySuggestion:
        try:
            async with self._client() as client:
                response = await client.post("/predict", json=features.to_payload())
        except httpx.TimeoutException as e:
            raise ClassifierTimeout(f"Classifier did not answer within {self.timeout:.1f}s") from e
        except httpx.TransportError as e:
            raise ModelUnavailable(f"Classifier unreachable: {e}") from e

        failure = self.STATUS_FAILURES.get(response.status_code)
        if failure is not None:
            raise failure(f"Classifier returned HTTP {response.status_code}")
        if response.status_code >= 400:
            raise PredictionFailed(f"Classifier returned HTTP {response.status_code}")

        try:
            body = response.json()
            category = str(body["category"]).strip()
            confidence = float(body.get("confidence", 0.0))
        except (ValueError, KeyError, TypeError) as e:
            raise PredictionFailed(f"Unreadable classifier response: {e}") from e

        if category in ERROR_SENTINELS:
            raise ERROR_SENTINELS[category](category)
        if category.startswith("Error:"):
            raise PredictionFailed(category)

        return CategorySuggestion(category=category, confidence=confidence)

    async def check_connection(self) -> bool:
        try:
            async with self._client() as client:
                response = await client.get("/health")
            return response.status_code < 400
        except httpx.HTTPError:
            return False


def build_classifier() -> ClassifierAdapter:
    """Classifier for the configured backend."""
    if config.CLASSIFIER_BACKEND == "remote":
        return RemoteClassifier()
    return LocalModelClassifier()
