from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional

from inventory_ledger.catalog.models import ItemKind, ItemRef
from inventory_ledger.common.money import ZERO, ExtraCost, D, coerce_extra_costs, non_negative
from inventory_ledger.common.timeutils import parse_calendar_date, parse_timestamp
from inventory_ledger.errors import InvalidInput

DEFAULT_CATEGORY = "Operacional"


class EntryKind(str, Enum):
    PURCHASE = "purchase"
    SALE = "sale"


class Direction(str, Enum):
    IN = "IN"
    OUT = "OUT"

    @property
    def entry_kind(self) -> EntryKind:
        return EntryKind.PURCHASE if self is Direction.IN else EntryKind.SALE


class MigrationScope(str, Enum):
    PRODUCTS = "products"
    KITS = "kits"

    @property
    def item_kind(self) -> ItemKind:
        return ItemKind.PRODUCT if self is MigrationScope.PRODUCTS else ItemKind.KIT


# Legacy storage used Portuguese kind names.
_LEGACY_KINDS = {"entrada": EntryKind.PURCHASE, "saida": EntryKind.SALE}


def parse_entry_kind(v: Any) -> EntryKind:
    if isinstance(v, EntryKind):
        return v
    s = str(v or "").strip().lower()
    if s in _LEGACY_KINDS:
        return _LEGACY_KINDS[s]
    try:
        return EntryKind(s)
    except ValueError as e:
        raise InvalidInput(f"kind must be 'purchase' or 'sale', got {v!r}") from e


def require_quantity(v: Any) -> int:
    if isinstance(v, bool) or not isinstance(v, int):
        raise InvalidInput("quantity must be an integer")
    if v < 1:
        raise InvalidInput("quantity must be >= 1")
    return v


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    """
    One priced purchase or sale line. Immutable; edits go through
    `builder.recompute`, which re-derives every computed field at once.

    Firestore path:
      tenants/{tenant_id}/ledger_entries/{id}

    Notes:
    - money fields are Decimal and stored as decimal strings.
    - `source_movement_id` is the back-reference written by the backfill
      migrator; hand-entered entries leave it None.
    """

    id: str
    tenant_id: str
    kind: EntryKind
    date: date
    quantity: int
    unit_cost: Decimal
    unit_price: Decimal
    total_value: Decimal
    total_cost: Decimal
    net_profit: Decimal
    margin_percent: Decimal
    description: str = ""
    item_ref: Optional[ItemRef] = None
    extra_costs: tuple[ExtraCost, ...] = field(default_factory=tuple)
    category: str = DEFAULT_CATEGORY
    source_movement_id: Optional[str] = None
    created_by: Optional[str] = None

    def __post_init__(self) -> None:
        eid = str(self.id or "").strip()
        if not eid:
            raise InvalidInput("entry id is required")
        object.__setattr__(self, "id", eid)
        tid = str(self.tenant_id or "").strip()
        if not tid:
            raise InvalidInput("tenant_id is required")
        object.__setattr__(self, "tenant_id", tid)

        object.__setattr__(self, "kind", parse_entry_kind(self.kind))
        object.__setattr__(self, "date", parse_calendar_date(self.date))
        require_quantity(self.quantity)
        object.__setattr__(self, "unit_cost", non_negative(self.unit_cost, field="unit_cost"))
        object.__setattr__(self, "unit_price", non_negative(self.unit_price, field="unit_price"))
        object.__setattr__(self, "extra_costs", coerce_extra_costs(self.extra_costs))

        for name in ("total_value", "total_cost", "net_profit", "margin_percent"):
            object.__setattr__(self, name, D(getattr(self, name), field=name))

        if self.kind is EntryKind.PURCHASE:
            if self.net_profit != ZERO or self.margin_percent != ZERO:
                raise InvalidInput("purchase entries carry no profit or margin")
            if self.total_cost != self.total_value:
                raise InvalidInput("purchase entries must have total_cost == total_value")
        elif self.net_profit != self.total_value - self.total_cost:
            raise InvalidInput("sale entries must have net_profit == total_value - total_cost")

        object.__setattr__(self, "description", str(self.description or ""))
        object.__setattr__(self, "category", str(self.category or DEFAULT_CATEGORY).strip() or DEFAULT_CATEGORY)

    @property
    def is_sale(self) -> bool:
        return self.kind is EntryKind.SALE

    def to_firestore_doc(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "kind": self.kind.value,
            "date": self.date.isoformat(),
            "quantity": self.quantity,
            "unit_cost": str(self.unit_cost),
            "unit_price": str(self.unit_price),
            "extra_costs": [c.to_dict() for c in self.extra_costs],
            "total_value": str(self.total_value),
            "total_cost": str(self.total_cost),
            "net_profit": str(self.net_profit),
            "margin_percent": str(self.margin_percent),
            "description": self.description,
            "category": self.category,
            "item_ref": self.item_ref.to_dict() if self.item_ref else None,
            "source_movement_id": self.source_movement_id,
        }
        if self.created_by:
            doc["created_by"] = self.created_by
        return doc

    @staticmethod
    def from_firestore_doc(entry_id: str, data: Mapping[str, Any]) -> "LedgerEntry":
        d = dict(data or {})
        ref = d.get("item_ref")
        return LedgerEntry(
            id=str(d.get("id") or entry_id),
            tenant_id=str(d.get("tenant_id") or ""),
            kind=d.get("kind"),
            date=d.get("date"),
            quantity=int(d.get("quantity") or 0),
            unit_cost=d.get("unit_cost"),
            unit_price=d.get("unit_price"),
            total_value=d.get("total_value"),
            total_cost=d.get("total_cost"),
            net_profit=d.get("net_profit"),
            margin_percent=d.get("margin_percent"),
            description=d.get("description") or "",
            item_ref=ItemRef(kind=ref["kind"], id=ref["id"]) if isinstance(ref, Mapping) else None,
            extra_costs=coerce_extra_costs(d.get("extra_costs")),
            category=d.get("category") or DEFAULT_CATEGORY,
            source_movement_id=d.get("source_movement_id"),
            created_by=d.get("created_by"),
        )


@dataclass(frozen=True, slots=True)
class Movement:
    """
    Historical stock movement (inbound/outbound) read from the movement provider.

    Quantity is kept as given: a non-positive value is a per-movement error
    reported by the migrator, not a construction failure.
    """

    id: str
    tenant_id: str
    direction: Direction
    item_ref: ItemRef
    quantity: int
    timestamp: datetime
    reference: Optional[str] = None
    created_by: Optional[str] = None

    def __post_init__(self) -> None:
        mid = str(self.id or "").strip()
        if not mid:
            raise InvalidInput("movement id is required")
        object.__setattr__(self, "id", mid)
        try:
            direction = (
                self.direction
                if isinstance(self.direction, Direction)
                else Direction(str(self.direction or "").strip().upper())
            )
        except ValueError as e:
            raise InvalidInput(f"direction must be IN or OUT, got {self.direction!r}") from e
        object.__setattr__(self, "direction", direction)
        object.__setattr__(self, "timestamp", parse_timestamp(self.timestamp))

    @staticmethod
    def from_firestore_doc(*, tenant_id: str, movement_id: str, data: Mapping[str, Any]) -> "Movement":
        d = dict(data or {})
        return Movement(
            id=str(d.get("id") or movement_id),
            tenant_id=tenant_id,
            direction=d.get("direction") or d.get("type"),
            item_ref=movement_item_ref(movement_id, d),
            quantity=d.get("quantity"),
            timestamp=d.get("timestamp") or d.get("created_at"),
            reference=d.get("reference"),
            created_by=d.get("created_by"),
        )


def movement_item_ref(movement_id: str, data: Mapping[str, Any]) -> ItemRef:
    """The item a movement document points at; a kit id wins over a product id."""
    if data.get("kit_id"):
        return ItemRef.kit(str(data["kit_id"]))
    if data.get("product_id"):
        return ItemRef.product(str(data["product_id"]))
    raise InvalidInput(f"movement {movement_id!r} references no product or kit")


@dataclass(frozen=True, slots=True)
class UnreadableMovement:
    """
    A movement document whose item is known but whose other fields could not
    be parsed. The migrator counts it as an error for the matching scope.
    """

    id: str
    item_ref: ItemRef
    reason: str


@dataclass(frozen=True, slots=True)
class MovementFailure:
    movement_id: str
    reason: str


@dataclass(frozen=True, slots=True)
class MigrationRun:
    """Outcome of one backfill invocation. Not persisted."""

    scope: MigrationScope
    total: int
    created: int
    skipped: int
    errors: int
    message: str
    aborted: bool = False
    batches: int = 0
    failures: tuple[MovementFailure, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope": self.scope.value,
            "total": self.total,
            "created": self.created,
            "skipped": self.skipped,
            "errors": self.errors,
            "message": self.message,
            "aborted": self.aborted,
            "batches": self.batches,
            "failures": [{"movement_id": f.movement_id, "reason": f.reason} for f in self.failures],
        }
