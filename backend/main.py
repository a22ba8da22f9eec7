"""
Module: main.py
Description: FastAPI application entry point for the Spending Tracker API.

This module provides REST API endpoints for:
    - Payment accounts (UPI, card, bank) and transaction creation/listing
    - Suggest-then-confirm transaction categorization
    - Spending aggregation by category, by period and by flow
    - Spending forecasts with an optional AI expenditure tip

Author: Spending Tracker Team

Dependencies:
    - FastAPI for REST API framework
    - SQLAlchemy for database operations
    - scikit-learn/joblib or a remote service for category suggestions
    - OpenAI for expenditure tips

Usage:
    uvicorn main:app --reload --host 0.0.0.0 --port 8000
"""

from auth import get_current_user, is_auth_configured
from services.observability import logger, metrics
from services import (
    AIService, AggregationEngine, CategorizationService, CategoryStore,
    ClassifierAdapter, DateRange, FlowMode, ForecastMethod, InsightGenerator,
    AccountRepository, TransactionFilters, TransactionRepository,
    UNCATEGORIZED, build_category_store, build_classifier,
)
from services.errors import CatalogUnavailable, InvalidArgument, NotFound, SpendingTrackerError
from schemas import (
    HealthResponse, AccountsResponse,
    UpiAccountCreate, CardAccountCreate, BankAccountCreate,
    UpiAccountOut, CardAccountOut, BankAccountOut,
    TransactionCreate, TransactionOut,
    CategoryUpdateRequest, CategorySuggestionOut,
    CategorySpendingOut, FlowSummaryOut, PeriodTotalOut, AnalyticsInsightOut,
    FlowParam, PeriodParam, MethodParam,
)
from models import TransactionFlow, TransactionType, UserUpiAccount, UserCardAccount, UserBankAccount
import config
import time
from contextlib import asynccontextmanager
from datetime import datetime
from functools import lru_cache
from typing import Optional, Dict
from collections import defaultdict

from fastapi import FastAPI, BackgroundTasks, Depends, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session as DBSession

from database import get_db, init_db, SessionLocal


# =============================================================================
# Rate Limiting
# =============================================================================

class RateLimiter:
    """
    Simple in-memory rate limiter.

    The classifier behind suggestions is rate and latency sensitive, so each
    user gets a bounded number of suggestion requests per window.

    Uses sliding window algorithm with configurable limits.
    """

    def __init__(self, max_requests: int = 30, window_seconds: int = 60):
        """
        Initialize rate limiter.

        Args:
            max_requests: Maximum requests allowed per window.
            window_seconds: Time window in seconds.
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.requests: Dict[str, list] = defaultdict(list)

    def is_allowed(self, identifier: str) -> bool:
        """
        Check if request is allowed for given identifier.

        Args:
            identifier: User ID.

        Returns:
            True if request is allowed, False if rate limited.
        """
        now = time.time()
        window_start = now - self.window_seconds

        self.requests[identifier] = [
            t for t in self.requests[identifier]
            if t > window_start
        ]

        if len(self.requests[identifier]) >= self.max_requests:
            return False

        self.requests[identifier].append(now)
        return True

    def get_reset_time(self, identifier: str) -> float:
        """Get seconds until rate limit resets."""
        if identifier not in self.requests or not self.requests[identifier]:
            return 0
        oldest = min(self.requests[identifier])
        return max(0, oldest + self.window_seconds - time.time())

    def reset(self) -> None:
        self.requests.clear()


suggestion_rate_limiter = RateLimiter(max_requests=config.SUGGESTION_RATE_LIMIT, window_seconds=60)


# =============================================================================
# Application Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    On startup: create tables and seed the category catalog.
    """
    logger.info("Starting Spending Tracker API",
                classifier=config.CLASSIFIER_BACKEND, categories=config.CATEGORY_SOURCE,
                auth_configured=is_auth_configured())
    init_db()
    logger.info("Database initialized with default categories")

    yield

    logger.info("Shutting down Spending Tracker API")


# =============================================================================
# FastAPI Application Configuration
# =============================================================================

app = FastAPI(
    title="Spending Tracker API",
    description="""
    Transaction categorization, spending analytics and forecasting for UPI,
    card and net-banking payments.

    ## Features
    - Payment accounts and transactions
    - Suggest-then-confirm categorization (rules, trained model or remote classifier)
    - Spending by category, by period and by flow
    - Moving-average / linear-trend forecasts with an AI expenditure tip
    """,
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:8081",
        "http://localhost:19006",
        "http://localhost:3000",
        "http://127.0.0.1:8081",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Error Mapping
# =============================================================================

@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(InvalidArgument)
async def invalid_argument_handler(request: Request, exc: InvalidArgument) -> JSONResponse:
    metrics.increment("request.invalid_argument")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(CatalogUnavailable)
async def catalog_unavailable_handler(request: Request, exc: CatalogUnavailable) -> JSONResponse:
    logger.error("Category catalog unavailable", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": str(exc)})


# =============================================================================
# Dependency Injection
# =============================================================================

@lru_cache(maxsize=1)
def get_ai_service() -> AIService:
    """Dependency: shared OpenAI wrapper used for expenditure tips."""
    return AIService()


@lru_cache(maxsize=1)
def get_classifier() -> ClassifierAdapter:
    """Dependency: classifier adapter for the configured backend."""
    return build_classifier()


def get_session_factory():
    """Dependency: session factory for work that outlives the request."""
    return SessionLocal


def get_category_store(db: DBSession = Depends(get_db)) -> CategoryStore:
    return build_category_store(db)


def get_transaction_repository(db: DBSession = Depends(get_db)) -> TransactionRepository:
    return TransactionRepository(db)


def get_categorization_service(
    repository: TransactionRepository = Depends(get_transaction_repository),
    category_store: CategoryStore = Depends(get_category_store),
    classifier: ClassifierAdapter = Depends(get_classifier),
) -> CategorizationService:
    return CategorizationService(repository, category_store, classifier)


def get_insight_generator(
    repository: TransactionRepository = Depends(get_transaction_repository),
    category_store: CategoryStore = Depends(get_category_store),
    ai_service: AIService = Depends(get_ai_service),
) -> InsightGenerator:
    return InsightGenerator(repository, category_store, ai_service)


aggregation_engine = AggregationEngine()


# =============================================================================
# Health Check Endpoints
# =============================================================================

@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["System"],
    summary="Health check endpoint",
    description="Check the health of the API, database, classifier and text generation."
)
async def health_check(
    db: DBSession = Depends(get_db),
    classifier: ClassifierAdapter = Depends(get_classifier),
    ai_service: AIService = Depends(get_ai_service),
) -> HealthResponse:
    """
    Perform health check on all system components.

    Example:
        GET /health
        Response: {"status": "healthy", "database": "connected",
                   "classifier": "connected", "text_generation": "disconnected"}
    """
    try:
        db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)}"

    try:
        classifier_status = "connected" if await classifier.check_connection() else "disconnected"
    except Exception as e:
        classifier_status = f"error: {str(e)}"

    try:
        tip_status = "connected" if await ai_service.check_connection() else "disconnected"
    except Exception as e:
        tip_status = f"error: {str(e)}"

    overall_status = "healthy" if db_status == "connected" else "degraded"

    return HealthResponse(
        status=overall_status,
        database=db_status,
        classifier=classifier_status,
        text_generation=tip_status,
    )


@app.get(
    "/metrics",
    tags=["System"],
    summary="Get application metrics",
    description="Counters and timings for classifier calls, categorization and tips."
)
async def get_metrics():
    """
    Example:
        GET /metrics
        Response: {
            "uptime_seconds": 3600,
            "counters": {"classifier.suggestions": 15, "classifier.failure[kind=timeout]": 2},
            "timings": {"classifier.local": {"avg_ms": 12.5, ...}}
        }
    """
    return metrics.get_summary()


# =============================================================================
# Categories
# =============================================================================

@app.get(
    "/categories",
    response_model=list[str],
    tags=["Categories"],
    summary="List available transaction categories",
)
async def get_categories(
    category_store: CategoryStore = Depends(get_category_store),
) -> list[str]:
    return category_store.list_categories()


# =============================================================================
# Payment Accounts
# =============================================================================

@app.get(
    "/accounts",
    response_model=AccountsResponse,
    tags=["Accounts"],
    summary="List the caller's payment accounts",
)
async def list_accounts(
    db: DBSession = Depends(get_db),
    user_id: str = Depends(get_current_user),
) -> AccountsResponse:
    return AccountsResponse(**AccountRepository(db).list_all(user_id))


@app.post(
    "/accounts/upi",
    response_model=UpiAccountOut,
    status_code=status.HTTP_201_CREATED,
    tags=["Accounts"],
)
async def add_upi_account(
    request: UpiAccountCreate,
    db: DBSession = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    return AccountRepository(db).add(user_id, UserUpiAccount, **request.model_dump())


@app.post(
    "/accounts/card",
    response_model=CardAccountOut,
    status_code=status.HTTP_201_CREATED,
    tags=["Accounts"],
)
async def add_card_account(
    request: CardAccountCreate,
    db: DBSession = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    return AccountRepository(db).add(user_id, UserCardAccount, **request.model_dump())


@app.post(
    "/accounts/bank",
    response_model=BankAccountOut,
    status_code=status.HTTP_201_CREATED,
    tags=["Accounts"],
)
async def add_bank_account(
    request: BankAccountCreate,
    db: DBSession = Depends(get_db),
    user_id: str = Depends(get_current_user),
):
    return AccountRepository(db).add(user_id, UserBankAccount, **request.model_dump())


# =============================================================================
# Transactions
# =============================================================================

async def auto_categorize_in_background(
    session_factory,
    classifier: ClassifierAdapter,
    owner_id: str,
    transaction_id: str,
) -> None:
    """Suggest-and-apply for a new transaction, on its own database session."""
    db = session_factory()
    try:
        service = CategorizationService(
            TransactionRepository(db), build_category_store(db), classifier
        )
        await service.auto_categorize(owner_id, transaction_id)
    except SpendingTrackerError as e:
        logger.error("Background categorization failed",
                     transaction_id=transaction_id, error=str(e))
        metrics.increment("categorization.background_failed")
    finally:
        db.close()


@app.post(
    "/transactions",
    response_model=TransactionOut,
    status_code=status.HTTP_201_CREATED,
    tags=["Transactions"],
    summary="Create a transaction",
    description="Create a UPI, card or net-banking transaction. It starts uncategorized; "
                "a suggestion is applied in the background when auto-categorization is on."
)
async def create_transaction(
    request: TransactionCreate,
    background_tasks: BackgroundTasks,
    repository: TransactionRepository = Depends(get_transaction_repository),
    classifier: ClassifierAdapter = Depends(get_classifier),
    session_factory=Depends(get_session_factory),
    user_id: str = Depends(get_current_user),
):
    txn = repository.create(user_id, request)
    metrics.increment("transactions.created", tags={"type": txn.transaction_type.value})
    logger.info("Transaction created", transaction_id=txn.id, type=txn.transaction_type.value)

    if config.AUTO_CATEGORIZE_ON_CREATE:
        background_tasks.add_task(
            auto_categorize_in_background, session_factory, classifier, user_id, txn.id
        )
    return txn


@app.get(
    "/transactions",
    response_model=list[TransactionOut],
    tags=["Transactions"],
    summary="List the caller's transactions, newest first",
)
async def list_transactions(
    limit: int = 100,
    offset: int = Query(0, ge=0),
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    transaction_type: Optional[TransactionType] = None,
    flow: Optional[TransactionFlow] = None,
    uncategorized_only: bool = False,
    repository: TransactionRepository = Depends(get_transaction_repository),
    user_id: str = Depends(get_current_user),
):
    """
    Args:
        limit: Maximum number of transactions to return (default 100, max 500).
        offset: Number of transactions to skip.
        date_from / date_to: Inclusive timestamp bounds.
    """
    date_range = DateRange(date_from, date_to)
    return repository.find_by_owner(user_id, TransactionFilters(
        date_from=date_range.date_from,
        date_to=date_range.date_to,
        transaction_type=transaction_type,
        flow=flow,
        uncategorized_only=uncategorized_only,
        limit=limit,
        offset=offset,
    ))


@app.post(
    "/transactions/categorize",
    tags=["Categorization"],
    summary="Auto-categorize the caller's uncategorized transactions",
)
async def categorize_uncategorized(
    limit: int = 100,
    service: CategorizationService = Depends(get_categorization_service),
    user_id: str = Depends(get_current_user),
):
    categorized = await service.categorize_uncategorized(user_id, limit=limit)
    return {"categorized": categorized}


@app.get(
    "/transactions/{transaction_id}",
    response_model=TransactionOut,
    tags=["Transactions"],
)
async def get_transaction(
    transaction_id: str,
    repository: TransactionRepository = Depends(get_transaction_repository),
    user_id: str = Depends(get_current_user),
):
    return repository.get_snapshot(user_id, transaction_id)


# =============================================================================
# Categorization
# =============================================================================

@app.get(
    "/transactions/{transaction_id}/suggestion",
    response_model=Optional[CategorySuggestionOut],
    tags=["Categorization"],
    summary="Fetch a category suggestion",
    description="Returns null when no suggestion is available (classifier failure or timeout)."
)
async def get_suggestion(
    transaction_id: str,
    service: CategorizationService = Depends(get_categorization_service),
    user_id: str = Depends(get_current_user),
):
    if not suggestion_rate_limiter.is_allowed(user_id):
        reset_time = suggestion_rate_limiter.get_reset_time(user_id)
        metrics.increment("suggestion.rate_limited")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Too many suggestion requests. Try again in {int(reset_time)} seconds.",
            headers={"Retry-After": str(int(reset_time) + 1)},
        )

    suggestion = await service.request_suggestion(user_id, transaction_id)
    if suggestion is None:
        return None
    return CategorySuggestionOut(category=suggestion.category, confidence=suggestion.confidence)


@app.post(
    "/transactions/{transaction_id}/suggestion/confirm",
    response_model=TransactionOut,
    tags=["Categorization"],
    summary="Accept the pending suggestion",
)
async def confirm_suggestion(
    transaction_id: str,
    service: CategorizationService = Depends(get_categorization_service),
    user_id: str = Depends(get_current_user),
):
    return service.confirm_suggestion(user_id, transaction_id)


@app.put(
    "/transactions/{transaction_id}/category",
    response_model=TransactionOut,
    tags=["Categorization"],
    summary="Set or override a transaction's category",
)
async def set_category(
    transaction_id: str,
    request: CategoryUpdateRequest,
    service: CategorizationService = Depends(get_categorization_service),
    user_id: str = Depends(get_current_user),
):
    return service.set_category(user_id, transaction_id, request.category)


# =============================================================================
# Analytics
# =============================================================================

def _transactions_in_range(
    repository: TransactionRepository, user_id: str, date_range: DateRange
):
    return repository.find_by_owner(user_id, TransactionFilters(
        date_from=date_range.date_from, date_to=date_range.date_to,
    ))


@app.get(
    "/analytics/category-spending",
    response_model=list[CategorySpendingOut],
    tags=["Analytics"],
    summary="Spending by category for a date range",
    description="Largest total first; uncategorized transactions are grouped under 'Uncategorized'."
)
async def get_category_spending(
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    flow: FlowParam = "DEBIT",
    repository: TransactionRepository = Depends(get_transaction_repository),
    user_id: str = Depends(get_current_user),
):
    date_range = DateRange(date_from, date_to)
    transactions = _transactions_in_range(repository, user_id, date_range)
    summary = aggregation_engine.summarize_by_category(transactions, date_range, FlowMode(flow))
    return [
        CategorySpendingOut(
            category=s.category,
            total_amount=s.total_amount,
            transaction_count=s.transaction_count,
            percentage=s.percentage,
            is_uncategorized=s.is_uncategorized,
        )
        for s in summary
    ]


@app.get(
    "/analytics/flow-summary",
    response_model=FlowSummaryOut,
    tags=["Analytics"],
    summary="Credit, debit and net totals for a date range",
)
async def get_flow_summary(
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    repository: TransactionRepository = Depends(get_transaction_repository),
    user_id: str = Depends(get_current_user),
):
    date_range = DateRange(date_from, date_to)
    transactions = _transactions_in_range(repository, user_id, date_range)
    summary = aggregation_engine.flow_summary(transactions, date_range)
    return FlowSummaryOut(
        total_credit=summary.total_credit,
        total_debit=summary.total_debit,
        net_spending=summary.net_spending,
        transaction_count=summary.transaction_count,
    )


@app.get(
    "/analytics/period-totals",
    response_model=list[PeriodTotalOut],
    tags=["Analytics"],
    summary="Totals per week or month, gaps zero-filled",
)
async def get_period_totals(
    period: PeriodParam = "month",
    flow: FlowParam = "DEBIT",
    category: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    repository: TransactionRepository = Depends(get_transaction_repository),
    category_store: CategoryStore = Depends(get_category_store),
    user_id: str = Depends(get_current_user),
):
    if category is not None and category != UNCATEGORIZED:
        category_store.validate(category)
    date_range = DateRange(date_from, date_to)
    transactions = _transactions_in_range(repository, user_id, date_range)
    totals = aggregation_engine.period_totals(
        transactions, period=period, flow=FlowMode(flow),
        date_range=date_range, category=category,
    )
    return [PeriodTotalOut(period=p.period, start=p.start, total=p.total) for p in totals]


@app.get(
    "/analytics/insight",
    response_model=AnalyticsInsightOut,
    tags=["Analytics"],
    summary="Forecast upcoming spending with an optional tip",
    description="Projects the next N periods from the caller's spending history, optionally "
                "for one category. The tip is omitted when text generation fails."
)
async def get_analytics_insight(
    periods_ahead: int = config.DEFAULT_PERIODS_AHEAD,
    category: Optional[str] = None,
    method: MethodParam = "MOVING_AVERAGE",
    period: PeriodParam = "month",
    generator: InsightGenerator = Depends(get_insight_generator),
    user_id: str = Depends(get_current_user),
):
    insight = await generator.generate(
        user_id,
        periods_ahead=periods_ahead,
        category=category,
        method=ForecastMethod(method),
        period=period,
    )
    return AnalyticsInsightOut(
        forecasted_spending=insight.forecasted_spending,
        periods_covered=insight.periods_covered,
        category_context=insight.category_context,
        expenditure_tip=insight.expenditure_tip,
        method=insight.method,
        period=insight.period,
        low_confidence=insight.low_confidence,
        history_periods=insight.history_periods,
    )


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
