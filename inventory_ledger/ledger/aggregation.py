from __future__ import annotations

"""
Period Aggregator: ledger entries -> per-day series + summary KPIs.

Conventions:
- windows are inclusive calendar-date ranges [start, end] in the reporting timezone
- only SALE entries feed revenue/cost/profit/transaction counts
- the previous window has the same length and ends the day before `start`
- sums are exact Decimal (order-independent); outputs are quantized to cents
"""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Iterable, Optional

from inventory_ledger.common.money import HUNDRED, ZERO, quantize_money
from inventory_ledger.common.timeutils import parse_calendar_date
from inventory_ledger.errors import InvalidInput
from inventory_ledger.ledger.models import EntryKind, LedgerEntry


@dataclass(frozen=True, slots=True)
class PeriodPoint:
    date: date
    revenue: Decimal
    cost: Decimal
    profit: Decimal
    transaction_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "revenue": str(self.revenue),
            "cost": str(self.cost),
            "profit": str(self.profit),
            "transaction_count": self.transaction_count,
        }


@dataclass(frozen=True, slots=True)
class PeriodSummary:
    average_ticket: Decimal
    profit_growth_percent: Decimal
    average_margin_percent: Decimal
    accumulated_profit: Decimal
    total_revenue: Decimal
    total_cost: Decimal
    sale_count: int
    previous_profit: Decimal
    purchase_cost_total: Optional[Decimal] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "average_ticket": str(self.average_ticket),
            "profit_growth_percent": str(self.profit_growth_percent),
            "average_margin_percent": str(self.average_margin_percent),
            "accumulated_profit": str(self.accumulated_profit),
            "total_revenue": str(self.total_revenue),
            "total_cost": str(self.total_cost),
            "sale_count": self.sale_count,
            "previous_profit": str(self.previous_profit),
        }
        if self.purchase_cost_total is not None:
            out["purchase_cost_total"] = str(self.purchase_cost_total)
        return out


@dataclass(frozen=True, slots=True)
class Aggregation:
    series: tuple[PeriodPoint, ...]
    summary: PeriodSummary

    def to_dict(self) -> dict[str, Any]:
        return {
            "series": [p.to_dict() for p in self.series],
            "summary": self.summary.to_dict(),
        }


def check_window(start: Any, end: Any) -> tuple[date, date]:
    s = parse_calendar_date(start)
    e = parse_calendar_date(end)
    if e < s:
        raise InvalidInput(f"window end {e.isoformat()} is before start {s.isoformat()}")
    return s, e


def previous_window(start: Any, end: Any) -> tuple[date, date]:
    """
    Equal-length window immediately preceding [start, end].

    Example: previous_window(2024-02-01, 2024-02-29) -> (2024-01-03, 2024-01-31)
    """
    s, e = check_window(start, end)
    return s - (e - s) - timedelta(days=1), s - timedelta(days=1)


def in_window(entry: LedgerEntry, start: date, end: date) -> bool:
    return start <= entry.date <= end


def sales_in(entries: Iterable[LedgerEntry], start: date, end: date) -> list[LedgerEntry]:
    return [e for e in entries if e.kind is EntryKind.SALE and in_window(e, start, end)]


def growth_percent(current: Decimal, previous: Decimal) -> Decimal:
    # No positive baseline -> 0 by definition (not an error).
    if previous <= 0:
        return ZERO
    return (current - previous) / previous * HUNDRED


def aggregate(
    entries: Iterable[LedgerEntry],
    start: Any,
    end: Any,
    *,
    include_purchases: bool = False,
) -> Aggregation:
    """
    Aggregate entries over the inclusive window [start, end].

    The previous-window profit used for growth is read from the same `entries`,
    so callers should pass entries covering both windows.
    """
    s, e = check_window(start, end)
    prev_s, prev_e = previous_window(s, e)
    rows = list(entries)

    by_day: dict[date, list[Decimal]] = {}
    counts: dict[date, int] = {}
    revenue = cost = profit = ZERO
    sale_count = 0
    purchase_cost = ZERO
    previous_profit = ZERO

    for row in rows:
        if row.kind is EntryKind.PURCHASE:
            if in_window(row, s, e):
                purchase_cost += row.total_cost
            continue
        if in_window(row, prev_s, prev_e):
            previous_profit += row.net_profit
            continue
        if not in_window(row, s, e):
            continue
        acc = by_day.setdefault(row.date, [ZERO, ZERO, ZERO])
        acc[0] += row.total_value
        acc[1] += row.total_cost
        acc[2] += row.net_profit
        counts[row.date] = counts.get(row.date, 0) + 1
        revenue += row.total_value
        cost += row.total_cost
        profit += row.net_profit
        sale_count += 1

    series = tuple(
        PeriodPoint(
            date=day,
            revenue=quantize_money(acc[0]),
            cost=quantize_money(acc[1]),
            profit=quantize_money(acc[2]),
            transaction_count=counts[day],
        )
        for day, acc in sorted(by_day.items())
    )

    average_ticket = revenue / sale_count if sale_count else ZERO
    margin = profit / revenue * HUNDRED if revenue > 0 else ZERO

    summary = PeriodSummary(
        average_ticket=quantize_money(average_ticket),
        profit_growth_percent=quantize_money(growth_percent(profit, previous_profit)),
        average_margin_percent=quantize_money(margin),
        accumulated_profit=quantize_money(profit),
        total_revenue=quantize_money(revenue),
        total_cost=quantize_money(cost),
        sale_count=sale_count,
        previous_profit=quantize_money(previous_profit),
        purchase_cost_total=quantize_money(purchase_cost) if include_purchases else None,
    )
    return Aggregation(series=series, summary=summary)
