"""
Test Module: test_insight_generator.py
Description: Tests for forecast + tip orchestration and the OpenAI tip wrapper.

Tests:
    - History bucketing per month, category filter, as-of cut-off
    - Tip failure never withholds the numeric forecast
    - Input validation (category filter, horizon)
    - AIService retry and failure mapping with a mocked client

Author: Spending Tracker Team
"""

import asyncio
import pytest
from datetime import date, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import FakeAIService, OWNER
from services.ai_service import AIService
from services.errors import InvalidArgument, InvalidCategory, TextGenerationFailed
from services.forecaster import ForecastMethod
from services.insight_generator import InsightGenerator
from services.observability import metrics

AS_OF = datetime(2024, 3, 20)


@pytest.fixture
def history(create_txn, repository):
    """Jan 100, Feb 200, Mar 300 of food; one travel debit; one salary credit."""
    create_txn(100, timestamp=datetime(2024, 1, 10))
    create_txn(200, timestamp=datetime(2024, 2, 10))
    create_txn(300, timestamp=datetime(2024, 3, 10))
    travel = create_txn(900, payee="IndiGo", kind="CARD", timestamp=datetime(2024, 2, 15))
    repository.update_category(OWNER, travel.id, "Travel")
    create_txn(50000, payee="Payroll", kind="NET_BANKING", flow="CREDIT", timestamp=datetime(2024, 3, 1))
    # After the as-of date; must be ignored
    create_txn(10000, timestamp=datetime(2024, 4, 2))


def generate(repository, category_store, ai_service, **kwargs):
    generator = InsightGenerator(repository, category_store, ai_service)
    return asyncio.run(generator.generate(OWNER, as_of=AS_OF, **kwargs))


class TestInsightGenerator:

    def test_uncategorized_history_forecast(self, repository, category_store, history):
        ai = FakeAIService()

        insight = generate(repository, category_store, ai, periods_ahead=2, category="Uncategorized")

        assert insight.forecasted_spending == [200.0, 233.33]
        assert insight.periods_covered == 2
        assert insight.category_context == "Uncategorized"
        assert insight.history_periods == 3
        assert insight.low_confidence is False
        assert insight.expenditure_tip == ai.tip
        assert ai.calls[0]["as_of"] == date(2024, 3, 20)

    def test_all_spending_includes_every_category_but_not_credits(self, repository, category_store, history):
        generator = InsightGenerator(repository, category_store, FakeAIService())

        assert generator.history(OWNER, as_of=AS_OF) == [100.0, 1100.0, 300.0]

    def test_category_filter_zero_fills_to_as_of(self, repository, category_store, history):
        generator = InsightGenerator(repository, category_store, FakeAIService())

        assert generator.history(OWNER, category="Travel", as_of=AS_OF) == [900.0, 0.0]

    def test_tip_failure_keeps_forecast(self, repository, category_store, history):
        insight = generate(repository, category_store, FakeAIService(fail=True), periods_ahead=3)

        assert len(insight.forecasted_spending) == 3
        assert insight.expenditure_tip is None
        assert metrics.counters["tip.failure"] == 1

    def test_linear_trend(self, repository, category_store, history):
        insight = generate(repository, category_store, FakeAIService(), periods_ahead=1,
                           category="Uncategorized", method=ForecastMethod.LINEAR_TREND)

        assert insight.forecasted_spending == [400.0]
        assert insight.method == "LINEAR_TREND"

    def test_no_history_is_low_confidence_zero(self, repository, category_store, accounts):
        insight = generate(repository, category_store, FakeAIService(), periods_ahead=2)

        assert insight.forecasted_spending == [0.0, 0.0]
        assert insight.low_confidence is True
        assert insight.history_periods == 0

    def test_unknown_category_filter_rejected(self, repository, category_store, history):
        ai = FakeAIService()

        with pytest.raises(InvalidCategory):
            generate(repository, category_store, ai, category="Crypto")
        assert ai.calls == []

    def test_invalid_horizon_rejected(self, repository, category_store, history):
        with pytest.raises(InvalidArgument):
            generate(repository, category_store, FakeAIService(), periods_ahead=0)


# =============================================================================
# AIService
# =============================================================================

def completion(text):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
        usage=SimpleNamespace(total_tokens=42),
    )


def mock_client(*effects):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=list(effects))
    return client


class TestAIService:

    def test_no_client_raises(self):
        service = AIService(api_key="")

        with pytest.raises(TextGenerationFailed):
            asyncio.run(service.generate_expenditure_tip([100.0], None, date(2024, 1, 1)))

    def test_returns_trimmed_tip_and_tracks_usage(self):
        service = AIService(api_key="", client=mock_client(completion("  Cook at home twice a week.  ")))

        tip = asyncio.run(service.generate_expenditure_tip([1200.0, 1300.0], "Food & Dining", date(2024, 1, 1)))

        assert tip == "Cook at home twice a week."
        assert service.get_usage_stats()["total_tokens"] == 42

    def test_retries_once_on_rate_limit(self):
        service = AIService(api_key="", client=mock_client(Exception("429 rate_limit"), completion("Tip")))
        service.INITIAL_DELAY = 0

        assert asyncio.run(service.generate_expenditure_tip([1.0], None, date(2024, 1, 1))) == "Tip"
        assert service.client.chat.completions.create.await_count == 2

    def test_gives_up_after_one_retry(self):
        service = AIService(api_key="", client=mock_client(Exception("503"), Exception("503"), completion("late")))
        service.INITIAL_DELAY = 0

        with pytest.raises(TextGenerationFailed):
            asyncio.run(service.generate_expenditure_tip([1.0], None, date(2024, 1, 1)))
        assert service.client.chat.completions.create.await_count == 2

    def test_non_retryable_error_fails_immediately(self):
        service = AIService(api_key="", client=mock_client(Exception("invalid api key")))

        with pytest.raises(TextGenerationFailed):
            asyncio.run(service.generate_expenditure_tip([1.0], None, date(2024, 1, 1)))
        assert service.client.chat.completions.create.await_count == 1

    def test_empty_tip_is_failure(self):
        service = AIService(api_key="", client=mock_client(completion("")))

        with pytest.raises(TextGenerationFailed):
            asyncio.run(service.generate_expenditure_tip([1.0], None, date(2024, 1, 1)))

    def test_context_has_no_payee_data(self):
        context = AIService.build_context([10.129, 20], None, date(2024, 5, 1), "week")

        assert context == {"as_of": "2024-05-01", "period": "week",
                           "category": "All spending", "forecast": [10.13, 20.0]}
