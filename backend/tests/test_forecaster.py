"""
Test Module: test_forecaster.py
Description: Unit tests for moving-average and linear-trend forecasting.

Author: Spending Tracker Team
"""

import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from services.errors import InvalidArgument
from services.forecaster import ForecastMethod, forecast, linear_trend, moving_average


class TestMovingAverage:

    def test_rolling_window_feeds_back(self):
        result = forecast([100, 200, 300], periods_ahead=2, method=ForecastMethod.MOVING_AVERAGE)

        assert result.values[0] == pytest.approx(200.0)
        assert result.values[1] == pytest.approx(233.333, abs=1e-2)
        assert result.low_confidence is False

    def test_window_is_capped_at_three(self):
        values = moving_average([1000, 10, 20, 30], periods_ahead=1)

        assert values == [pytest.approx(20.0)]

    def test_two_periods_use_window_of_two(self):
        values = moving_average([100, 300], periods_ahead=2)

        assert values == [pytest.approx(200.0), pytest.approx(250.0)]

    def test_default_method(self):
        assert forecast([10, 20, 30], 1).method == ForecastMethod.MOVING_AVERAGE


class TestLinearTrend:

    def test_projects_the_fitted_line(self):
        result = forecast([100, 200, 300], periods_ahead=3, method=ForecastMethod.LINEAR_TREND)

        assert result.values == [pytest.approx(400.0), pytest.approx(500.0), pytest.approx(600.0)]

    def test_declining_trend_is_floored_at_zero(self):
        result = forecast([300, 200, 100], periods_ahead=4, method="LINEAR_TREND")

        assert result.values[0] == pytest.approx(0.0, abs=1e-9)
        assert all(v == 0.0 for v in result.values[1:])

    def test_flat_history(self):
        assert linear_trend([50, 50, 50], 2) == [pytest.approx(50.0), pytest.approx(50.0)]


class TestEdgeCases:

    @pytest.mark.parametrize("method", list(ForecastMethod))
    @pytest.mark.parametrize("n", [1, 2, 5, 24])
    def test_returns_exactly_n_non_negative_values(self, method, n):
        result = forecast([120, 0, 95, 300, 10], periods_ahead=n, method=method)

        assert len(result.values) == n
        assert all(v >= 0 for v in result.values)

    def test_single_period_repeats_and_flags_low_confidence(self):
        result = forecast([420.5], periods_ahead=3)

        assert result.values == [420.5, 420.5, 420.5]
        assert result.low_confidence is True
        assert result.history_periods == 1

    def test_no_history_forecasts_zero(self):
        result = forecast([], periods_ahead=2, method=ForecastMethod.LINEAR_TREND)

        assert result.values == [0.0, 0.0]
        assert result.low_confidence is True

    @pytest.mark.parametrize("periods_ahead", [0, -1])
    def test_non_positive_horizon_rejected(self, periods_ahead):
        with pytest.raises(InvalidArgument):
            forecast([1, 2, 3], periods_ahead)

    def test_horizon_above_maximum_rejected(self):
        with pytest.raises(InvalidArgument):
            forecast([1, 2, 3], 25)

    def test_unknown_method_rejected(self):
        with pytest.raises(ValueError):
            forecast([1, 2, 3], 1, method="EXPONENTIAL")
