"""
Module: aggregation.py
Description: Spending aggregation by category, by time bucket and by flow.

All functions are pure: they take already-fetched transactions (anything
with `amount`, `flow`, `category` and `timestamp` attributes) and never
touch the database.

Author: Spending Tracker Team
"""

import enum
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

import pandas as pd

from models import TransactionFlow
from .category_store import UNCATEGORIZED
from .errors import InvalidArgument

ZERO = Decimal("0")

# pandas period aliases; weeks run Monday..Sunday
PERIOD_FREQUENCIES = {
    "month": "M",
    "week": "W-SUN",
}


class FlowMode(str, enum.Enum):
    """Which money movements count toward a total."""
    DEBIT = "DEBIT"    # spending view
    CREDIT = "CREDIT"  # income view
    NET = "NET"        # DEBIT - CREDIT


@dataclass(frozen=True)
class CategorySpending:
    category: str
    total_amount: Decimal
    transaction_count: int
    percentage: int = 0
    is_uncategorized: bool = False


@dataclass(frozen=True)
class FlowSummary:
    total_credit: Decimal
    total_debit: Decimal
    net_spending: Decimal
    transaction_count: int


@dataclass(frozen=True)
class PeriodTotal:
    period: str
    start: date
    total: float


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are stored naive UTC; convert aware values to match."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class DateRange:
    """Inclusive range; a missing bound is unbounded on that side."""
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, "date_from", as_naive_utc(self.date_from))
        object.__setattr__(self, "date_to", as_naive_utc(self.date_to))
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise InvalidArgument("date_from must not be after date_to")

    def contains(self, timestamp: datetime) -> bool:
        timestamp = as_naive_utc(timestamp)
        if self.date_from is not None and timestamp < self.date_from:
            return False
        if self.date_to is not None and timestamp > self.date_to:
            return False
        return True


UNBOUNDED = DateRange()


def signed_amount(transaction, flow: FlowMode) -> Optional[Decimal]:
    """
    Contribution of one transaction under `flow`, or None if it does not count.
    """
    amount = Decimal(str(transaction.amount))
    direction = TransactionFlow(transaction.flow)

    if flow == FlowMode.DEBIT:
        return amount if direction == TransactionFlow.DEBIT else None
    if flow == FlowMode.CREDIT:
        return amount if direction == TransactionFlow.CREDIT else None
    return amount if direction == TransactionFlow.DEBIT else -amount


def percentages(totals: list[Decimal]) -> list[int]:
    """
    Share of each total in their sum, rounded half-up to whole percent.
    All zeros when the sum is zero.
    """
    grand_total = sum(totals, ZERO)
    if grand_total == 0:
        return [0 for _ in totals]
    return [
        int((total / grand_total * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        for total in totals
    ]


class AggregationEngine:
    """Groups a transaction set by category, by period and by flow."""

    def filter_range(self, transactions: Iterable, date_range: Optional[DateRange] = None) -> list:
        date_range = date_range or UNBOUNDED
        return [t for t in transactions if date_range.contains(t.timestamp)]

    def summarize_by_category(
        self,
        transactions: Iterable,
        date_range: Optional[DateRange] = None,
        flow: FlowMode = FlowMode.DEBIT,
    ) -> list[CategorySpending]:
        """
        Totals per category within the range, largest first.

        Null categories are grouped into one "Uncategorized" bucket that stays
        distinct from any literal category string. Ties are broken by
        category name ascending.
        """
        totals: dict[Optional[str], Decimal] = defaultdict(lambda: ZERO)
        counts: dict[Optional[str], int] = defaultdict(int)

        for txn in self.filter_range(transactions, date_range):
            value = signed_amount(txn, flow)
            if value is None:
                continue
            totals[txn.category] += value
            counts[txn.category] += 1

        # None sorts after a literal of the same name
        ordered_keys = sorted(
            totals,
            key=lambda k: (-totals[k], UNCATEGORIZED if k is None else k, k is None),
        )
        shares = percentages([totals[k] for k in ordered_keys])

        return [
            CategorySpending(
                category=UNCATEGORIZED if key is None else key,
                total_amount=totals[key],
                transaction_count=counts[key],
                percentage=share,
                is_uncategorized=key is None,
            )
            for key, share in zip(ordered_keys, shares)
        ]

    def flow_summary(self, transactions: Iterable, date_range: Optional[DateRange] = None) -> FlowSummary:
        credit = debit = ZERO
        count = 0
        for txn in self.filter_range(transactions, date_range):
            amount = Decimal(str(txn.amount))
            if TransactionFlow(txn.flow) == TransactionFlow.CREDIT:
                credit += amount
            else:
                debit += amount
            count += 1
        return FlowSummary(
            total_credit=credit,
            total_debit=debit,
            net_spending=debit - credit,
            transaction_count=count,
        )

    def period_totals(
        self,
        transactions: Iterable,
        period: str = "month",
        flow: FlowMode = FlowMode.DEBIT,
        date_range: Optional[DateRange] = None,
        category: Optional[str] = None,
        until: Optional[datetime] = None,
    ) -> list[PeriodTotal]:
        """
        Ordered per-period totals, zero-filled between the first period with
        data and the last (or `until`'s period, if later).

        Args:
            category: restrict to one category; the literal "Uncategorized"
                selects transactions with no category.
        """
        if period not in PERIOD_FREQUENCIES:
            raise InvalidArgument(f"period must be one of {sorted(PERIOD_FREQUENCIES)}")
        freq = PERIOD_FREQUENCIES[period]

        rows = []
        for txn in self.filter_range(transactions, date_range):
            if category is not None:
                wanted = None if category == UNCATEGORIZED else category
                if txn.category != wanted:
                    continue
            value = signed_amount(txn, flow)
            if value is None:
                continue
            rows.append({"timestamp": as_naive_utc(txn.timestamp), "amount": float(value)})

        if not rows:
            return []

        df = pd.DataFrame(rows)
        df["period"] = pd.to_datetime(df["timestamp"]).dt.to_period(freq)
        grouped = df.groupby("period")["amount"].sum()

        first, last = grouped.index.min(), grouped.index.max()
        if until is not None:
            last = max(last, pd.Period(as_naive_utc(until), freq=freq))
        grouped = grouped.reindex(pd.period_range(first, last, freq=freq), fill_value=0.0)

        return [
            PeriodTotal(
                period=self._label(p, period),
                start=p.start_time.date(),
                total=round(float(total), 2),
            )
            for p, total in grouped.items()
        ]

    @staticmethod
    def _label(p: pd.Period, period: str) -> str:
        if period == "week":
            return p.start_time.strftime("%G-W%V")
        return p.strftime("%Y-%m")
