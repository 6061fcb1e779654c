from __future__ import annotations

"""
Dashboard insights over ledger entries:
- profit map: per-item sales performance with a four-way classification
- goal progress: actual vs target for a monthly/quarterly/annual goal
"""

import calendar
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional

from inventory_ledger.catalog.models import ItemKind, ItemRef
from inventory_ledger.common.money import HUNDRED, ZERO, D, quantize_money
from inventory_ledger.errors import InvalidInput
from inventory_ledger.ledger.aggregation import check_window, sales_in
from inventory_ledger.ledger.models import LedgerEntry


class ItemClass(str, Enum):
    STAR = "star"
    PROBLEM = "problem"
    SHADOW = "shadow"
    STABLE = "stable"


@dataclass(frozen=True, slots=True)
class ItemProfit:
    item_ref: ItemRef
    revenue: Decimal
    cost: Decimal
    profit: Decimal
    quantity: int
    sales: int
    margin_percent: Decimal
    average_unit_ticket: Decimal
    classification: ItemClass

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_ref": self.item_ref.to_dict(),
            "revenue": str(self.revenue),
            "cost": str(self.cost),
            "profit": str(self.profit),
            "quantity": self.quantity,
            "sales": self.sales,
            "margin_percent": str(self.margin_percent),
            "average_unit_ticket": str(self.average_unit_ticket),
            "classification": self.classification.value,
        }


@dataclass(slots=True)
class _ItemAcc:
    revenue: Decimal = ZERO
    cost: Decimal = ZERO
    profit: Decimal = ZERO
    quantity: int = 0
    sales: int = 0

    @property
    def margin(self) -> Decimal:
        return self.profit / self.revenue * HUNDRED if self.revenue > 0 else ZERO


def _classify(
    acc: _ItemAcc,
    *,
    top_profit: bool,
    top_quantity: bool,
    avg_profit: Decimal,
    avg_revenue: Decimal,
) -> ItemClass:
    if top_profit and top_quantity:
        return ItemClass.STAR
    if acc.profit < 0 or (acc.profit < avg_profit * Decimal("0.5") and acc.margin < 10):
        return ItemClass.PROBLEM
    if acc.revenue > avg_revenue and acc.margin < 15:
        return ItemClass.SHADOW
    return ItemClass.STABLE


def profit_by_item(
    entries: Iterable[LedgerEntry],
    start: Any,
    end: Any,
    *,
    kind: Optional[ItemKind | str] = None,
) -> list[ItemProfit]:
    """
    Per-item sale performance over [start, end], sorted by profit (desc).

    Classification:
    - star: top quartile by profit AND by quantity sold
    - problem: a loss, or profit below half the average with margin < 10%
    - shadow: revenue above the average revenue with margin < 15%
    - stable: everything else

    Entries without an item_ref are ignored. `kind` restricts to products or kits.
    """
    s, e = check_window(start, end)
    want = ItemKind(kind) if kind is not None else None

    accs: dict[ItemRef, _ItemAcc] = {}
    for row in sales_in(entries, s, e):
        ref = row.item_ref
        if ref is None or (want is not None and ref.kind is not want):
            continue
        acc = accs.setdefault(ref, _ItemAcc())
        acc.revenue += row.total_value
        acc.cost += row.total_cost
        acc.profit += row.net_profit
        acc.quantity += row.quantity
        acc.sales += 1

    if not accs:
        return []

    n = len(accs)
    cutoff = Decimal(n) * Decimal("0.25")
    avg_profit = sum((a.profit for a in accs.values()), ZERO) / n
    avg_revenue = sum((a.revenue for a in accs.values()), ZERO) / n

    # Ties are broken by item id so ranks are stable across input orderings.
    by_profit = sorted(accs, key=lambda r: (-accs[r].profit, r.kind.value, r.id))
    by_quantity = sorted(accs, key=lambda r: (-accs[r].quantity, r.kind.value, r.id))
    profit_rank = {r: i for i, r in enumerate(by_profit)}
    quantity_rank = {r: i for i, r in enumerate(by_quantity)}

    out: list[ItemProfit] = []
    for ref in by_profit:
        acc = accs[ref]
        out.append(
            ItemProfit(
                item_ref=ref,
                revenue=quantize_money(acc.revenue),
                cost=quantize_money(acc.cost),
                profit=quantize_money(acc.profit),
                quantity=acc.quantity,
                sales=acc.sales,
                margin_percent=quantize_money(acc.margin),
                average_unit_ticket=quantize_money(acc.revenue / acc.quantity) if acc.quantity else ZERO,
                classification=_classify(
                    acc,
                    top_profit=profit_rank[ref] < cutoff,
                    top_quantity=quantity_rank[ref] < cutoff,
                    avg_profit=avg_profit,
                    avg_revenue=avg_revenue,
                ),
            )
        )
    return out


class GoalMetric(str, Enum):
    REVENUE = "revenue"
    PROFIT = "profit"
    MARGIN = "margin"
    SALES = "sales"


class GoalPeriod(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


@dataclass(frozen=True, slots=True)
class FinancialGoal:
    """
    Target for one metric over a calendar period.

    `month` is required for monthly goals and, for quarterly goals, picks the
    quarter that contains it. Annual goals ignore it.
    """

    metric: GoalMetric
    target: Decimal
    period: GoalPeriod
    year: int
    month: Optional[int] = None

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "metric", GoalMetric(self.metric))
            object.__setattr__(self, "period", GoalPeriod(self.period))
        except ValueError as e:
            raise InvalidInput(str(e)) from e
        target = D(self.target, field="target")
        if target <= 0:
            raise InvalidInput("target must be > 0")
        object.__setattr__(self, "target", target)
        if isinstance(self.year, bool) or not isinstance(self.year, int) or not 1 <= self.year <= 9999:
            raise InvalidInput("year must be a valid calendar year")
        if self.period is not GoalPeriod.ANNUAL:
            if self.month is None or isinstance(self.month, bool) or not 1 <= int(self.month) <= 12:
                raise InvalidInput(f"{self.period.value} goals need a month between 1 and 12")


@dataclass(frozen=True, slots=True)
class GoalProgress:
    actual: Decimal
    target: Decimal
    progress_percent: Decimal
    achieved: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "actual": str(self.actual),
            "target": str(self.target),
            "progress_percent": str(self.progress_percent),
            "achieved": self.achieved,
        }


def goal_window(goal: FinancialGoal) -> tuple[date, date]:
    if goal.period is GoalPeriod.ANNUAL:
        return date(goal.year, 1, 1), date(goal.year, 12, 31)
    month = int(goal.month)
    if goal.period is GoalPeriod.MONTHLY:
        return date(goal.year, month, 1), date(goal.year, month, calendar.monthrange(goal.year, month)[1])
    first = 3 * ((month - 1) // 3) + 1
    last = first + 2
    return date(goal.year, first, 1), date(goal.year, last, calendar.monthrange(goal.year, last)[1])


def goal_progress(goal: FinancialGoal, entries: Iterable[LedgerEntry]) -> GoalProgress:
    """Progress is capped at 100%; `achieved` compares the raw actual with the target."""
    s, e = goal_window(goal)
    sales = sales_in(entries, s, e)
    revenue = sum((x.total_value for x in sales), ZERO)
    profit = sum((x.net_profit for x in sales), ZERO)

    if goal.metric is GoalMetric.REVENUE:
        actual = revenue
    elif goal.metric is GoalMetric.PROFIT:
        actual = profit
    elif goal.metric is GoalMetric.MARGIN:
        actual = profit / revenue * HUNDRED if revenue > 0 else ZERO
    else:
        actual = Decimal(len(sales))

    progress = min(actual / goal.target * HUNDRED, HUNDRED)
    return GoalProgress(
        actual=quantize_money(actual),
        target=goal.target,
        progress_percent=quantize_money(progress),
        achieved=actual >= goal.target,
    )
