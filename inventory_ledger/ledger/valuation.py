from __future__ import annotations

"""
Pure valuation functions: kit cost roll-up and transaction-line pricing.

Rounding: arithmetic is exact Decimal; only the four figures returned by
`price` are quantized to cents (ROUND_HALF_UP). Profit is the difference of the
rounded totals; margin is computed from the unrounded ones.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable

from inventory_ledger.catalog.models import Catalog, Item, Kit, Product
from inventory_ledger.common.money import (
    HUNDRED,
    ZERO,
    ExtraCost,
    coerce_extra_costs,
    non_negative,
    quantize_money,
    sum_extra_costs,
)
from inventory_ledger.errors import InvalidInput, Unresolvable
from inventory_ledger.ledger.models import EntryKind, require_quantity, parse_entry_kind


@dataclass(frozen=True, slots=True)
class Pricing:
    total_value: Decimal
    total_cost: Decimal
    net_profit: Decimal
    margin_percent: Decimal


def resolve_unit_cost(item: Item, *, catalog: Catalog) -> Decimal:
    """
    Effective unit cost of a catalog item.

    - Product: its stored unit_cost.
    - Kit: sum(component cost x component qty) + kit extra costs, looked up
      through `catalog` on every call so component price changes show up
      immediately.

    Components must be products. A component id that resolves to a kit raises
    InvalidInput (nested kits are not supported, which also rules out cycles);
    a missing component raises Unresolvable.
    """
    if isinstance(item, Product):
        return item.unit_cost
    if not isinstance(item, Kit):
        raise InvalidInput(f"cannot value {type(item).__name__}")

    total = ZERO
    for comp in item.components:
        component = catalog.get_component(comp.product_id)
        if component is None:
            raise Unresolvable(f"kit {item.id!r} references missing product {comp.product_id!r}")
        if isinstance(component, Kit):
            raise InvalidInput(f"kit {item.id!r} references kit {comp.product_id!r}; nested kits are not supported")
        total += component.unit_cost * comp.quantity
    return total + sum_extra_costs(item.extra_costs)


def price(
    kind: EntryKind | str,
    quantity: int,
    unit_cost: Any,
    unit_price: Any,
    extra_costs: Iterable[Any] = (),
) -> Pricing:
    """
    Price one transaction line.

    PURCHASE: value = qty x unit_cost + extras; cost = value; no profit/margin.
    SALE:     value = qty x unit_price + extras; cost = qty x unit_cost + extras;
              profit = value - cost; margin = profit / value x 100 (0 when value is 0).

    Example: price(SALE, 3, "10.00", "25.00", [("frete", "5.00")])
      -> value 75.00, cost 35.00, profit 40.00, margin 53.33
    """
    k = parse_entry_kind(kind)
    qty = require_quantity(quantity)
    cost = non_negative(unit_cost, field="unit_cost")
    px = non_negative(unit_price, field="unit_price")
    extras: tuple[ExtraCost, ...] = coerce_extra_costs(extra_costs)
    extra_total = sum_extra_costs(extras)

    if k is EntryKind.PURCHASE:
        total_value = qty * cost + extra_total
        return Pricing(
            total_value=quantize_money(total_value),
            total_cost=quantize_money(total_value),
            net_profit=quantize_money(ZERO),
            margin_percent=quantize_money(ZERO),
        )

    total_value = qty * px + extra_total
    total_cost = qty * cost + extra_total
    net_profit = total_value - total_cost
    margin = (net_profit / total_value) * HUNDRED if total_value > 0 else ZERO
    rv = quantize_money(total_value)
    rc = quantize_money(total_cost)
    return Pricing(
        total_value=rv,
        total_cost=rc,
        # Keep profit == value - cost on the rounded figures the entry stores.
        net_profit=rv - rc,
        margin_percent=quantize_money(margin),
    )
