"""
Module: observability.py
Description: Structured logging and in-process metrics for the Spending Tracker API.

Features:
    - key=value structured log lines with optional request context
    - Counters, gauges and timing histograms
    - @timed decorator for sync and async callables

Usage:
    from services.observability import logger, metrics, timed

    @timed("classifier.suggest")
    async def suggest(features):
        logger.info("Predicting", transaction_id=features.transaction_id)

Author: Spending Tracker Team
"""

import asyncio
import functools
import logging
import time
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Optional


# =============================================================================
# Structured Logger
# =============================================================================

class StructuredLogger:
    """
    Logger that appends keyword fields as `key=value` pairs.
    """

    def __init__(self, name: str = "spending-tracker"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(
                '%(asctime)s | %(levelname)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
            self.logger.addHandler(handler)

    def _format_message(self, message: str, **kwargs) -> str:
        if not kwargs:
            return message
        return message + " | " + " | ".join(f"{k}={v}" for k, v in kwargs.items())

    def info(self, message: str, **kwargs) -> None:
        self.logger.info(self._format_message(message, **kwargs))

    def warning(self, message: str, **kwargs) -> None:
        self.logger.warning(self._format_message(message, **kwargs))

    def error(self, message: str, **kwargs) -> None:
        self.logger.error(self._format_message(message, **kwargs))

    def debug(self, message: str, **kwargs) -> None:
        self.logger.debug(self._format_message(message, **kwargs))

    def exception(self, message: str, **kwargs) -> None:
        """Log at error level with the active traceback."""
        self.logger.exception(self._format_message(message, **kwargs))


# =============================================================================
# Metrics Collector
# =============================================================================

class MetricsCollector:
    """
    In-memory counters, gauges and timings.

    Timing series keep the most recent 1000 samples per key.
    """

    MAX_SAMPLES = 1000

    def __init__(self):
        self.counters: Dict[str, int] = defaultdict(int)
        self.gauges: Dict[str, float] = {}
        self.timings: Dict[str, list] = defaultdict(list)
        self._start_time = datetime.utcnow()

    def increment(self, name: str, value: int = 1, tags: Dict[str, str] = None) -> None:
        self.counters[self._make_key(name, tags)] += value

    def gauge(self, name: str, value: float, tags: Dict[str, str] = None) -> None:
        self.gauges[self._make_key(name, tags)] = value

    def timing(self, name: str, duration_ms: float, tags: Dict[str, str] = None) -> None:
        samples = self.timings[self._make_key(name, tags)]
        samples.append(duration_ms)
        if len(samples) > self.MAX_SAMPLES:
            del samples[:-self.MAX_SAMPLES]

    def reset(self) -> None:
        self.counters.clear()
        self.gauges.clear()
        self.timings.clear()

    def _make_key(self, name: str, tags: Optional[Dict[str, str]] = None) -> str:
        if tags:
            tag_str = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
            return f"{name}:{tag_str}"
        return name

    def get_summary(self) -> Dict[str, Any]:
        summary = {
            "uptime_seconds": (datetime.utcnow() - self._start_time).total_seconds(),
            "counters": dict(self.counters),
            "gauges": dict(self.gauges),
            "timings": {},
        }

        for name, values in self.timings.items():
            if not values:
                continue
            ordered = sorted(values)
            summary["timings"][name] = {
                "count": len(ordered),
                "avg_ms": sum(ordered) / len(ordered),
                "min_ms": ordered[0],
                "max_ms": ordered[-1],
                "p50_ms": ordered[len(ordered) // 2],
                "p95_ms": ordered[int(len(ordered) * 0.95)] if len(ordered) >= 20 else None,
            }

        return summary


# =============================================================================
# Timing Decorators
# =============================================================================

def timed(name: str = None):
    """
    Time a function and record `<name>.success` / `<name>.error` counters.

    Works for both plain and `async def` functions.
    """
    def decorator(func: Callable) -> Callable:
        metric_name = name or func.__name__

        def _finish(start: float) -> None:
            duration_ms = (time.perf_counter() - start) * 1000
            metrics.timing(metric_name, duration_ms)
            logger.debug(f"{metric_name} completed", duration_ms=f"{duration_ms:.2f}")

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
                metrics.increment(f"{metric_name}.success")
                return result
            except Exception:
                metrics.increment(f"{metric_name}.error")
                raise
            finally:
                _finish(start)

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
                metrics.increment(f"{metric_name}.success")
                return result
            except Exception:
                metrics.increment(f"{metric_name}.error")
                raise
            finally:
                _finish(start)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


@contextmanager
def timed_block(name: str):
    """Context manager variant of @timed."""
    start = time.perf_counter()
    try:
        yield
        metrics.increment(f"{name}.success")
    except Exception:
        metrics.increment(f"{name}.error")
        raise
    finally:
        metrics.timing(name, (time.perf_counter() - start) * 1000)


# =============================================================================
# Global Instances
# =============================================================================

logger = StructuredLogger()
metrics = MetricsCollector()


# =============================================================================
# Convenience Functions
# =============================================================================

def log_classifier_failure(transaction_id: str, failure: Exception, attempt: int) -> None:
    """Record a classifier failure that was downgraded to 'no suggestion'."""
    kind = getattr(failure, "kind", type(failure).__name__)
    logger.warning(
        "Category suggestion unavailable",
        transaction_id=transaction_id, kind=kind, attempt=attempt, reason=str(failure),
    )
    metrics.increment("classifier.failure", tags={"kind": kind})


def log_suggestion(transaction_id: str, category: str, confidence: float) -> None:
    logger.info("Category suggested", transaction_id=transaction_id,
                category=category, confidence=f"{confidence:.2f}")
    metrics.increment("classifier.suggestions")


def log_category_set(transaction_id: str, category: str, source: str, changed: bool) -> None:
    logger.info("Category set", transaction_id=transaction_id,
                category=category, source=source, changed=changed)
    metrics.increment("categorization.set", tags={"source": source})


def log_tip_failure(reason: str) -> None:
    logger.warning("Expenditure tip unavailable", reason=reason)
    metrics.increment("tip.failure")
