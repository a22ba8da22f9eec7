"""
Module: config.py
Description: Environment-driven configuration for the Spending Tracker API.

All settings are read once at import time from the process environment
(optionally populated from a .env file).

Author: Spending Tracker Team
"""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


# =============================================================================
# Database
# =============================================================================

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./spending_tracker.db")


# =============================================================================
# Authentication
# =============================================================================

AUTH_BYPASS = _env_bool("AUTH_BYPASS")
AUTH_BYPASS_USER_ID = os.getenv("AUTH_BYPASS_USER_ID", "demo_user_123")
JWT_SECRET = os.getenv("JWT_SECRET", "")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWKS_URL = os.getenv("JWKS_URL", "")


# =============================================================================
# Classifier
# =============================================================================

CLASSIFIER_BACKEND = os.getenv("CLASSIFIER_BACKEND", "local").lower()  # local|remote
CLASSIFIER_URL = os.getenv("CLASSIFIER_URL", "http://localhost:8001").rstrip("/")
# Hard ceiling of 10s on any single classifier call
CLASSIFIER_TIMEOUT_SECONDS = min(float(os.getenv("CLASSIFIER_TIMEOUT_SECONDS", "10")), 10.0)
CLASSIFIER_RETRY_BACKOFF_SECONDS = float(os.getenv("CLASSIFIER_RETRY_BACKOFF_SECONDS", "0.5"))
MODEL_DIR = Path(os.getenv("MODEL_DIR", str(Path(__file__).parent / "models")))
SUGGESTION_RATE_LIMIT = int(os.getenv("SUGGESTION_RATE_LIMIT", "30"))
AUTO_CATEGORIZE_ON_CREATE = _env_bool("AUTO_CATEGORIZE_ON_CREATE", "true")


# =============================================================================
# Category catalog & caching
# =============================================================================

CATEGORY_SOURCE = os.getenv("CATEGORY_SOURCE", "database").lower()  # database|remote
CATEGORY_CACHE_TTL_SECONDS = float(os.getenv("CATEGORY_CACHE_TTL_SECONDS", "300"))
TRANSACTION_CACHE_TTL_SECONDS = float(os.getenv("TRANSACTION_CACHE_TTL_SECONDS", "60"))
TRANSACTION_CACHE_MAX_ENTRIES = int(os.getenv("TRANSACTION_CACHE_MAX_ENTRIES", "1024"))


# =============================================================================
# Text generation (expenditure tips)
# =============================================================================

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
TIP_TIMEOUT_SECONDS = float(os.getenv("TIP_TIMEOUT_SECONDS", "10"))


# =============================================================================
# Forecasting
# =============================================================================

FORECAST_HISTORY_PERIODS = int(os.getenv("FORECAST_HISTORY_PERIODS", "12"))
FORECAST_MAX_PERIODS_AHEAD = int(os.getenv("FORECAST_MAX_PERIODS_AHEAD", "24"))
DEFAULT_PERIODS_AHEAD = int(os.getenv("DEFAULT_PERIODS_AHEAD", "4"))
