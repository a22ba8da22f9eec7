"""Backend services for transaction categorization, aggregation and forecasting."""

from .ai_service import AIService
from .aggregation import AggregationEngine, DateRange, FlowMode
from .category_store import CategoryStore, UNCATEGORIZED, build_category_store
from .categorizer import CategorizationService, CategorizationState, SuggestionCoordinator, get_suggestion_coordinator
from .classifier import ClassifierAdapter, LocalModelClassifier, RemoteClassifier, build_classifier
from .forecaster import ForecastMethod, ForecastResult, forecast
from .insight_generator import AnalyticsInsight, InsightGenerator
from .repository import AccountRepository, TransactionFilters, TransactionRepository

__all__ = [
    "AIService",
    "AggregationEngine",
    "DateRange",
    "FlowMode",
    "CategoryStore",
    "UNCATEGORIZED",
    "build_category_store",
    "CategorizationService",
    "CategorizationState",
    "SuggestionCoordinator",
    "get_suggestion_coordinator",
    "ClassifierAdapter",
    "LocalModelClassifier",
    "RemoteClassifier",
    "build_classifier",
    "ForecastMethod",
    "ForecastResult",
    "forecast",
    "AnalyticsInsight",
    "InsightGenerator",
    "AccountRepository",
    "TransactionFilters",
    "TransactionRepository",
]
