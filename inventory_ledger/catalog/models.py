from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Protocol, Union

from inventory_ledger.common.money import ExtraCost, coerce_extra_costs, non_negative
from inventory_ledger.errors import InvalidInput


class ItemKind(str, Enum):
    PRODUCT = "product"
    KIT = "kit"


@dataclass(frozen=True, slots=True)
class ItemRef:
    kind: ItemKind
    id: str

    def __post_init__(self) -> None:
        try:
            kind = ItemKind(self.kind)
        except ValueError as e:
            raise InvalidInput(f"item kind must be 'product' or 'kit', got {self.kind!r}") from e
        object.__setattr__(self, "kind", kind)
        iid = str(self.id or "").strip()
        if not iid:
            raise InvalidInput("item id is required")
        object.__setattr__(self, "id", iid)

    @staticmethod
    def product(item_id: str) -> "ItemRef":
        return ItemRef(kind=ItemKind.PRODUCT, id=item_id)

    @staticmethod
    def kit(item_id: str) -> "ItemRef":
        return ItemRef(kind=ItemKind.KIT, id=item_id)

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "id": self.id}


@dataclass(frozen=True, slots=True)
class Product:
    """
    Catalog product with stored unit cost and sale price.

    Firestore path:
      tenants/{tenant_id}/products/{product_id}
    """

    id: str
    name: str
    unit_cost: Decimal
    unit_price: Decimal
    sku: Optional[str] = None

    def __post_init__(self) -> None:
        pid = str(self.id or "").strip()
        if not pid:
            raise InvalidInput("product id is required")
        object.__setattr__(self, "id", pid)
        object.__setattr__(self, "name", str(self.name or "").strip())
        object.__setattr__(self, "unit_cost", non_negative(self.unit_cost, field="unit_cost"))
        object.__setattr__(self, "unit_price", non_negative(self.unit_price, field="unit_price"))

    @property
    def ref(self) -> ItemRef:
        return ItemRef.product(self.id)


@dataclass(frozen=True, slots=True)
class KitComponent:
    product_id: str
    quantity: int

    def __post_init__(self) -> None:
        pid = str(self.product_id or "").strip()
        if not pid:
            raise InvalidInput("component product_id is required")
        object.__setattr__(self, "product_id", pid)
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int) or self.quantity <= 0:
            raise InvalidInput("component quantity must be a positive integer")


@dataclass(frozen=True, slots=True)
class Kit:
    """
    Composite item. Its cost is never stored: it is rolled up from the current
    component product costs (plus kit-level extra costs such as packaging).

    `unit_price` is optional; a kit without one cannot be sold through the
    migrator (there is nothing to derive revenue from).

    Firestore path:
      tenants/{tenant_id}/kits/{kit_id}
    """

    id: str
    name: str
    components: tuple[KitComponent, ...]
    unit_price: Optional[Decimal] = None
    extra_costs: tuple[ExtraCost, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        kid = str(self.id or "").strip()
        if not kid:
            raise InvalidInput("kit id is required")
        object.__setattr__(self, "id", kid)
        object.__setattr__(self, "name", str(self.name or "").strip())

        comps = tuple(self.components or ())
        if not comps:
            raise InvalidInput(f"kit {kid!r} must have at least one component")
        for c in comps:
            if not isinstance(c, KitComponent):
                raise InvalidInput("kit components must be KitComponent values")
        object.__setattr__(self, "components", comps)

        if self.unit_price is not None:
            object.__setattr__(self, "unit_price", non_negative(self.unit_price, field="unit_price"))
        object.__setattr__(self, "extra_costs", coerce_extra_costs(self.extra_costs))

    @property
    def ref(self) -> ItemRef:
        return ItemRef.kit(self.id)


Item = Union[Product, Kit]


class Catalog(Protocol):
    """Read-only catalog provider."""

    def get_item(self, ref: ItemRef) -> Optional[Item]:
        ...

    def get_component(self, product_id: str) -> Optional[Item]:
        """Look up a kit component by bare id; may return a Kit when the data is malformed."""
        ...


class InMemoryCatalog:
    """Dict-backed catalog for tests, scripts and precomputed snapshots."""

    def __init__(self, items: Iterable[Item] = ()) -> None:
        self._products: dict[str, Product] = {}
        self._kits: dict[str, Kit] = {}
        for it in items:
            self.put(it)

    def put(self, item: Item) -> None:
        if isinstance(item, Product):
            self._products[item.id] = item
        elif isinstance(item, Kit):
            self._kits[item.id] = item
        else:
            raise InvalidInput(f"unsupported catalog item: {type(item).__name__}")

    def get_item(self, ref: ItemRef) -> Optional[Item]:
        if ref.kind is ItemKind.PRODUCT:
            return self._products.get(ref.id)
        return self._kits.get(ref.id)

    def get_component(self, product_id: str) -> Optional[Item]:
        # Components are stored by bare id; a kit id here is a nesting error the
        # valuation layer reports explicitly.
        return self._products.get(product_id) or self._kits.get(product_id)


def _first(d: Mapping[str, Any], *keys: str) -> Any:
    # Legacy documents use the Portuguese column names.
    for k in keys:
        if d.get(k) is not None:
            return d[k]
    return None


def product_from_doc(product_id: str, data: Mapping[str, Any]) -> Product:
    d = dict(data or {})
    return Product(
        id=str(d.get("id") or product_id),
        name=str(d.get("name") or ""),
        unit_cost=_first(d, "unit_cost", "custo_unitario"),
        unit_price=_first(d, "unit_price", "preco_venda"),
        sku=d.get("sku"),
    )


def kit_from_doc(kit_id: str, data: Mapping[str, Any]) -> Kit:
    d = dict(data or {})
    comps = [
        KitComponent(product_id=str(c.get("product_id") or ""), quantity=int(c.get("quantity") or 0))
        for c in (d.get("components") or d.get("kit_items") or [])
    ]
    price = _first(d, "unit_price", "preco_venda")
    return Kit(
        id=str(d.get("id") or kit_id),
        name=str(d.get("name") or ""),
        components=tuple(comps),
        unit_price=price,
        extra_costs=coerce_extra_costs(d.get("extra_costs", d.get("custos_adicionais"))),
    )
