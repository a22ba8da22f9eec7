"""Forecast plus expenditure tip for one owner's spending history."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import config
from models import TransactionFlow
from .ai_service import AIService
from .aggregation import AggregationEngine, FlowMode, as_naive_utc
from .category_store import CategoryStore, UNCATEGORIZED
from .errors import TextGenerationFailed
from .forecaster import ForecastMethod, forecast
from .observability import log_tip_failure, logger
from .repository import TransactionFilters, TransactionRepository


@dataclass
class AnalyticsInsight:
    forecasted_spending: list[float]
    periods_covered: int
    category_context: Optional[str]
    expenditure_tip: Optional[str]
    method: str
    period: str
    low_confidence: bool
    history_periods: int


class InsightGenerator:
    """Per-period DEBIT history -> Forecast Engine -> optional tip."""

    def __init__(
        self,
        repository: TransactionRepository,
        category_store: CategoryStore,
        ai_service: AIService,
        engine: AggregationEngine = None,
    ):
        self.repository = repository
        self.category_store = category_store
        self.ai_service = ai_service
        self.engine = engine or AggregationEngine()

    def history(
        self,
        owner_id: str,
        category: Optional[str] = None,
        period: str = "month",
        as_of: Optional[datetime] = None,
    ) -> list[float]:
        """Zero-filled spending totals per period, oldest first, ending at `as_of`."""
        as_of = as_naive_utc(as_of) or datetime.utcnow()
        transactions = self.repository.find_by_owner(
            owner_id,
            TransactionFilters(date_to=as_of, flow=TransactionFlow.DEBIT),
        )
        totals = self.engine.period_totals(
            transactions, period=period, flow=FlowMode.DEBIT, category=category, until=as_of,
        )
        return [p.total for p in totals][-config.FORECAST_HISTORY_PERIODS:]

    async def generate(
        self,
        owner_id: str,
        periods_ahead: int = None,
        category: Optional[str] = None,
        method: ForecastMethod = ForecastMethod.MOVING_AVERAGE,
        period: str = "month",
        as_of: Optional[datetime] = None,
    ) -> AnalyticsInsight:
        """
        Build the analytics insight for the caller.

        The numeric forecast is always returned; a failed tip only leaves
        `expenditure_tip` empty.

        Raises:
            InvalidArgument: periods_ahead out of range or unknown period.
            InvalidCategory: category filter is neither a catalog category nor
                "Uncategorized".
        """
        if periods_ahead is None:
            periods_ahead = config.DEFAULT_PERIODS_AHEAD
        if category is not None and category != UNCATEGORIZED:
            self.category_store.validate(category)

        as_of = as_naive_utc(as_of) or datetime.utcnow()
        history = self.history(owner_id, category=category, period=period, as_of=as_of)
        result = forecast(history, periods_ahead, method)

        tip = None
        try:
            tip = await self.ai_service.generate_expenditure_tip(
                result.values, category, as_of.date(), period
            )
        except TextGenerationFailed as e:
            log_tip_failure(str(e))

        logger.info("Forecast generated", owner_id=owner_id, method=result.method.value,
                    periods=periods_ahead, history=len(history),
                    low_confidence=result.low_confidence, tip=tip is not None)

        return AnalyticsInsight(
            forecasted_spending=[round(v, 2) for v in result.values],
            periods_covered=len(result.values),
            category_context=category,
            expenditure_tip=tip,
            method=result.method.value,
            period=period,
            low_confidence=result.low_confidence,
            history_periods=result.history_periods,
        )
