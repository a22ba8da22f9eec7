"""
Module: forecaster.py
Description: Short-horizon spending projection from ordered per-period totals.

Two deterministic methods:
    - MOVING_AVERAGE: rolling mean of the trailing window (up to 3 periods);
      each forecast value feeds back into the window.
    - LINEAR_TREND: least-squares line over the history, projected forward.

Forecasts never go below zero. With fewer than two historical periods the
last known value (or zero) is repeated and flagged as low-confidence.

Author: Spending Tracker Team

Usage:
    result = forecast([100, 200, 300], periods_ahead=2)
    result.values  # [200.0, 233.33...]
"""

import enum
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

import config
from .errors import InvalidArgument

MAX_WINDOW = 3
MIN_HISTORY = 2


class ForecastMethod(str, enum.Enum):
    MOVING_AVERAGE = "MOVING_AVERAGE"
    LINEAR_TREND = "LINEAR_TREND"


@dataclass
class ForecastResult:
    values: list[float] = field(default_factory=list)
    low_confidence: bool = False
    method: ForecastMethod = ForecastMethod.MOVING_AVERAGE
    history_periods: int = 0

    def __len__(self) -> int:
        return len(self.values)


def _validate_horizon(periods_ahead: int) -> None:
    if isinstance(periods_ahead, bool) or not isinstance(periods_ahead, int):
        raise InvalidArgument("periods_ahead must be an integer")
    if periods_ahead <= 0:
        raise InvalidArgument("periods_ahead must be positive")
    if periods_ahead > config.FORECAST_MAX_PERIODS_AHEAD:
        raise InvalidArgument(
            f"periods_ahead must be at most {config.FORECAST_MAX_PERIODS_AHEAD}"
        )


def moving_average(history: Sequence[float], periods_ahead: int) -> list[float]:
    """Rolling forecast: each projected value joins the window for the next one."""
    window = min(MAX_WINDOW, len(history))
    series = list(history)
    projected = []
    for _ in range(periods_ahead):
        value = float(np.mean(series[-window:]))
        projected.append(value)
        series.append(value)
    return projected


def linear_trend(history: Sequence[float], periods_ahead: int) -> list[float]:
    """Least-squares fit over period indices 0..n-1, evaluated at n..n+k-1."""
    n = len(history)
    x = np.arange(n, dtype=float)
    slope, intercept = np.polyfit(x, np.asarray(history, dtype=float), 1)
    future = np.arange(n, n + periods_ahead, dtype=float)
    return [float(v) for v in slope * future + intercept]


def forecast(
    period_totals: Sequence[float],
    periods_ahead: int,
    method: ForecastMethod = ForecastMethod.MOVING_AVERAGE,
) -> ForecastResult:
    """
    Project `periods_ahead` future period totals.

    Args:
        period_totals: Historical totals, oldest first.
        periods_ahead: Number of periods to project (1..FORECAST_MAX_PERIODS_AHEAD).
        method: Projection method.

    Returns:
        ForecastResult with exactly `periods_ahead` values, all >= 0.

    Raises:
        InvalidArgument: if `periods_ahead` is out of range.
    """
    _validate_horizon(periods_ahead)
    method = ForecastMethod(method)
    history = [float(v) for v in period_totals]

    if len(history) < MIN_HISTORY:
        last = history[-1] if history else 0.0
        values = [last] * periods_ahead
        low_confidence = True
    else:
        if method == ForecastMethod.LINEAR_TREND:
            values = linear_trend(history, periods_ahead)
        else:
            values = moving_average(history, periods_ahead)
        low_confidence = False

    return ForecastResult(
        values=[max(0.0, v) for v in values],
        low_confidence=low_confidence,
        method=method,
        history_periods=len(history),
    )
