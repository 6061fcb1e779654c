"""
Ledger Entry Builder: validated input -> fully priced, immutable LedgerEntry.

Drafts and patches are pydantic models (extra fields rejected). Plain
mappings are accepted too and validated here; validation failures surface as
`InvalidInput` so callers see one error type for every bad input.

Cost/price resolution for `build`:
- unit_cost: explicit > catalog (product cost or kit roll-up) > purchase
  `total_value / quantity` > InvalidInput
- unit_price (sale): explicit > `total_value / quantity` > catalog price > InvalidInput
- unit_price (purchase): explicit or 0

`total_value` on a draft is the line amount before extra costs.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
from decimal import Decimal
from typing import Any, List, Mapping, Optional, Type, TypeVar, Union
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, Field, StrictInt, ValidationError, field_validator
from pydantic.config import ConfigDict

from inventory_ledger.catalog.models import Catalog, Item, ItemKind, ItemRef
from inventory_ledger.common.money import ExtraCost
from inventory_ledger.errors import InvalidInput, Unresolvable
from inventory_ledger.ledger.models import DEFAULT_CATEGORY, EntryKind, LedgerEntry, parse_entry_kind
from inventory_ledger.ledger.valuation import price, resolve_unit_cost
from inventory_ledger.tenancy.context import TenantContext

M = TypeVar("M", bound=BaseModel)


class ItemRefInput(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: ItemKind
    id: str = Field(..., min_length=1)

    def to_ref(self) -> ItemRef:
        return ItemRef(kind=self.kind, id=self.id)


class ExtraCostInput(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    label: str = Field(default="", validation_alias=AliasChoices("label", "descricao"))
    amount: Decimal = Field(..., ge=0, validation_alias=AliasChoices("amount", "valor"))

    def to_extra_cost(self) -> ExtraCost:
        return ExtraCost(label=self.label, amount=self.amount)


def _item_ref_input(v: Any) -> Any:
    if isinstance(v, ItemRef):
        return v.to_dict()
    return v


def _extra_cost_inputs(v: Any) -> Any:
    if v is None:
        return []
    out: list[Any] = []
    for c in v:
        if isinstance(c, ExtraCost):
            out.append({"label": c.label, "amount": c.amount})
        elif isinstance(c, (tuple, list)) and len(c) == 2:
            out.append({"label": c[0], "amount": c[1]})
        else:
            out.append(c)
    return out


class LedgerDraft(BaseModel):
    """Input for `build`. Unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: Optional[str] = Field(default=None, description="Optional caller-chosen entry id")
    kind: EntryKind
    date: dt.date = Field(..., description="Transaction day (YYYY-MM-DD); back/forward dating allowed")
    item_ref: Optional[ItemRefInput] = None
    quantity: StrictInt = Field(default=1, ge=1)
    unit_cost: Optional[Decimal] = Field(default=None, ge=0)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    total_value: Optional[Decimal] = Field(default=None, ge=0, description="Flat line amount before extra costs")
    extra_costs: List[ExtraCostInput] = Field(default_factory=list)
    description: str = ""
    category: str = DEFAULT_CATEGORY
    created_by: Optional[str] = None

    @field_validator("kind", mode="before")
    @classmethod
    def _coerce_kind(cls, v: Any) -> Any:
        return parse_entry_kind(v)

    @field_validator("item_ref", mode="before")
    @classmethod
    def _coerce_item_ref(cls, v: Any) -> Any:
        return _item_ref_input(v)

    @field_validator("extra_costs", mode="before")
    @classmethod
    def _coerce_extra_costs(cls, v: Any) -> Any:
        return _extra_cost_inputs(v)


class LedgerPatch(BaseModel):
    """
    Partial edit for `recompute`. Only fields explicitly set are applied.

    `None` leaves a field unchanged, except `item_ref=None` which clears the
    item reference.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Optional[EntryKind] = None
    date: Optional[dt.date] = None
    item_ref: Optional[ItemRefInput] = None
    quantity: Optional[StrictInt] = Field(default=None, ge=1)
    unit_cost: Optional[Decimal] = Field(default=None, ge=0)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    total_value: Optional[Decimal] = Field(default=None, ge=0)
    extra_costs: Optional[List[ExtraCostInput]] = None
    description: Optional[str] = None
    category: Optional[str] = None
    created_by: Optional[str] = None

    @field_validator("kind", mode="before")
    @classmethod
    def _coerce_kind(cls, v: Any) -> Any:
        return None if v is None else parse_entry_kind(v)

    @field_validator("item_ref", mode="before")
    @classmethod
    def _coerce_item_ref(cls, v: Any) -> Any:
        return _item_ref_input(v)

    @field_validator("extra_costs", mode="before")
    @classmethod
    def _coerce_extra_costs(cls, v: Any) -> Any:
        return None if v is None else _extra_cost_inputs(v)

    def is_set(self, name: str) -> bool:
        return name in self.model_fields_set and getattr(self, name) is not None


def _validate(model: Type[M], data: Union[M, Mapping[str, Any]]) -> M:
    if isinstance(data, model):
        return data
    if not isinstance(data, Mapping):
        raise InvalidInput(f"invalid {model.__name__}: expected a mapping, got {type(data).__name__}")
    try:
        return model.model_validate(dict(data))
    except ValidationError as e:
        raise InvalidInput(f"invalid {model.__name__}: {e}") from e


def _resolve_item(ref: ItemRef, catalog: Optional[Catalog]) -> Item:
    if catalog is None:
        raise Unresolvable(f"no catalog available to resolve {ref.kind.value} {ref.id!r}")
    item = catalog.get_item(ref)
    if item is None:
        raise Unresolvable(f"{ref.kind.value} {ref.id!r} not found")
    return item


def _per_unit(total: Decimal, quantity: int) -> Decimal:
    return total / Decimal(quantity)


def _catalog_price(item: Optional[Item]) -> Optional[Decimal]:
    # Kits may have no sale price assigned.
    return item.unit_price if item is not None else None


def build(
    draft: Union[LedgerDraft, Mapping[str, Any]],
    *,
    tenant_id: str,
    catalog: Optional[Catalog] = None,
) -> LedgerEntry:
    """
    Validate a draft and price it into a new LedgerEntry. Does not persist.

    Raises:
    - InvalidInput: bad fields, or no way to determine a required cost/price
    - Unresolvable: `item_ref` (or one of its kit components) is missing
    """
    d = _validate(LedgerDraft, draft)
    tenant = TenantContext(tenant_id=tenant_id, uid=d.created_by)

    ref = d.item_ref.to_ref() if d.item_ref else None
    item = _resolve_item(ref, catalog) if ref else None

    if d.unit_cost is not None:
        unit_cost = d.unit_cost
    elif item is not None:
        unit_cost = resolve_unit_cost(item, catalog=catalog)
    elif d.kind is EntryKind.PURCHASE and d.total_value is not None:
        unit_cost = _per_unit(d.total_value, d.quantity)
    else:
        raise InvalidInput("unit_cost is required when no item_ref is given")

    if d.kind is EntryKind.PURCHASE:
        unit_price = d.unit_price if d.unit_price is not None else Decimal("0")
    elif d.unit_price is not None:
        unit_price = d.unit_price
    elif d.total_value is not None:
        unit_price = _per_unit(d.total_value, d.quantity)
    else:
        catalog_price = _catalog_price(item)
        if catalog_price is None:
            raise InvalidInput("sale requires unit_price, total_value or a priced catalog item")
        unit_price = catalog_price

    extras = tuple(c.to_extra_cost() for c in d.extra_costs)
    p = price(d.kind, d.quantity, unit_cost, unit_price, extras)

    return LedgerEntry(
        id=d.id or uuid4().hex,
        tenant_id=tenant.tenant_id,
        kind=d.kind,
        date=d.date,
        quantity=d.quantity,
        unit_cost=unit_cost,
        unit_price=unit_price,
        total_value=p.total_value,
        total_cost=p.total_cost,
        net_profit=p.net_profit,
        margin_percent=p.margin_percent,
        description=d.description,
        item_ref=ref,
        extra_costs=extras,
        category=d.category,
        created_by=tenant.uid,
    )


def recompute(
    entry: LedgerEntry,
    patch: Union[LedgerPatch, Mapping[str, Any]],
    *,
    catalog: Optional[Catalog] = None,
) -> LedgerEntry:
    """
    Apply a patch and re-price. Returns a new entry; `entry` is untouched.

    id, tenant_id and source_movement_id always carry over. All four computed
    fields are replaced together.
    - a patched item_ref re-resolves unit_cost unless unit_cost is patched too
    - a patched total_value re-derives the per-unit figure (unit_price for a
      sale, unit_cost for a purchase) unless that figure is patched too
    - turning a purchase into a sale needs a price: unit_price, total_value or
      the catalog price of the item, else InvalidInput (as in `build`)
    """
    p = _validate(LedgerPatch, patch)

    kind = p.kind if p.is_set("kind") else entry.kind
    quantity = p.quantity if p.is_set("quantity") else entry.quantity

    ref = entry.item_ref
    item: Optional[Item] = None
    if "item_ref" in p.model_fields_set:
        ref = p.item_ref.to_ref() if p.item_ref else None
        item = _resolve_item(ref, catalog) if ref else None

    unit_cost = entry.unit_cost
    if p.is_set("unit_cost"):
        unit_cost = p.unit_cost
    elif item is not None:
        unit_cost = resolve_unit_cost(item, catalog=catalog)
    elif p.is_set("total_value") and kind is EntryKind.PURCHASE:
        unit_cost = _per_unit(p.total_value, quantity)

    unit_price = entry.unit_price
    if p.is_set("unit_price"):
        unit_price = p.unit_price
    elif p.is_set("total_value") and kind is EntryKind.SALE:
        unit_price = _per_unit(p.total_value, quantity)
    elif kind is EntryKind.SALE and entry.kind is EntryKind.PURCHASE:
        # A purchase carries no sale price worth keeping.
        if item is None and ref is not None:
            item = _resolve_item(ref, catalog)
        catalog_price = _catalog_price(item)
        if catalog_price is None:
            raise InvalidInput("sale requires unit_price, total_value or a priced catalog item")
        unit_price = catalog_price

    extras = (
        tuple(c.to_extra_cost() for c in p.extra_costs) if p.is_set("extra_costs") else entry.extra_costs
    )
    priced = price(kind, quantity, unit_cost, unit_price, extras)

    return dataclasses.replace(
        entry,
        kind=kind,
        date=p.date if p.is_set("date") else entry.date,
        quantity=quantity,
        unit_cost=unit_cost,
        unit_price=unit_price,
        extra_costs=extras,
        item_ref=ref,
        total_value=priced.total_value,
        total_cost=priced.total_cost,
        net_profit=priced.net_profit,
        margin_percent=priced.margin_percent,
        description=p.description if p.is_set("description") else entry.description,
        category=p.category if p.is_set("category") else entry.category,
        created_by=p.created_by if p.is_set("created_by") else entry.created_by,
    )
