from __future__ import annotations

"""
Period-over-period comparison for the financial dashboard.

Presets (relative to `today`, calendar months):
- previous_month:   this month vs last month
- previous_quarter: the last three months (current included) vs the three before
- previous_year:    this year vs last year

Variation is a percentage change; margin variation is a difference in points.
"""

import calendar
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable

from inventory_ledger.common.money import HUNDRED, ZERO, quantize_money
from inventory_ledger.errors import InvalidInput
from inventory_ledger.ledger.aggregation import check_window, sales_in
from inventory_ledger.ledger.models import LedgerEntry


class ComparisonPreset(str, Enum):
    PREVIOUS_MONTH = "previous_month"
    PREVIOUS_QUARTER = "previous_quarter"
    PREVIOUS_YEAR = "previous_year"


@dataclass(frozen=True, slots=True)
class Window:
    start: date
    end: date

    def __post_init__(self) -> None:
        s, e = check_window(self.start, self.end)
        object.__setattr__(self, "start", s)
        object.__setattr__(self, "end", e)


@dataclass(frozen=True, slots=True)
class MetricComparison:
    metric: str
    current: Decimal
    previous: Decimal
    variation: Decimal
    # Costs going up is bad news; consumers flip the colour for inverse metrics.
    inverse: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "current": str(self.current),
            "previous": str(self.previous),
            "variation": str(self.variation),
            "inverse": self.inverse,
        }


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    idx = year * 12 + (month - 1) + delta
    return idx // 12, idx % 12 + 1


def _month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def _month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def preset_windows(preset: ComparisonPreset | str, today: date) -> tuple[Window, Window]:
    """Return (current, previous) windows for a comparison preset."""
    try:
        p = ComparisonPreset(preset)
    except ValueError as e:
        raise InvalidInput(f"unknown comparison preset: {preset!r}") from e

    y, m = today.year, today.month
    if p is ComparisonPreset.PREVIOUS_MONTH:
        py, pm = _shift_month(y, m, -1)
        return (
            Window(_month_start(y, m), _month_end(y, m)),
            Window(_month_start(py, pm), _month_end(py, pm)),
        )
    if p is ComparisonPreset.PREVIOUS_QUARTER:
        cy, cm = _shift_month(y, m, -2)
        py, pm = _shift_month(y, m, -5)
        ey, em = _shift_month(y, m, -3)
        return (
            Window(_month_start(cy, cm), _month_end(y, m)),
            Window(_month_start(py, pm), _month_end(ey, em)),
        )
    return (
        Window(date(y, 1, 1), date(y, 12, 31)),
        Window(date(y - 1, 1, 1), date(y - 1, 12, 31)),
    )


def variation_percent(current: Decimal, previous: Decimal) -> Decimal:
    if previous == 0:
        return HUNDRED if current > 0 else ZERO
    return (current - previous) / previous * HUNDRED


@dataclass(frozen=True, slots=True)
class _Totals:
    revenue: Decimal
    cost: Decimal
    profit: Decimal
    sales: int

    @property
    def margin(self) -> Decimal:
        return self.profit / self.revenue * HUNDRED if self.revenue > 0 else ZERO


def _totals(entries: Iterable[LedgerEntry], window: Window) -> _Totals:
    sales = sales_in(entries, window.start, window.end)
    revenue = sum((e.total_value for e in sales), ZERO)
    cost = sum((e.total_cost for e in sales), ZERO)
    return _Totals(revenue=revenue, cost=cost, profit=revenue - cost, sales=len(sales))


def compare_periods(entries: Iterable[LedgerEntry], current: Window, previous: Window) -> list[MetricComparison]:
    """
    Revenue, cost, profit, sale count and margin for two windows, in that order.
    """
    rows = list(entries)
    cur = _totals(rows, current)
    prev = _totals(rows, previous)

    def money(metric: str, a: Decimal, b: Decimal, *, inverse: bool = False) -> MetricComparison:
        return MetricComparison(
            metric=metric,
            current=quantize_money(a),
            previous=quantize_money(b),
            variation=quantize_money(variation_percent(a, b)),
            inverse=inverse,
        )

    return [
        money("revenue", cur.revenue, prev.revenue),
        money("cost", cur.cost, prev.cost, inverse=True),
        money("profit", cur.profit, prev.profit),
        MetricComparison(
            metric="sales",
            current=Decimal(cur.sales),
            previous=Decimal(prev.sales),
            variation=quantize_money(variation_percent(Decimal(cur.sales), Decimal(prev.sales))),
        ),
        MetricComparison(
            metric="margin",
            current=quantize_money(cur.margin),
            previous=quantize_money(prev.margin),
            variation=quantize_money(cur.margin - prev.margin),
        ),
    ]
