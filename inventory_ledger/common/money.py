from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Mapping

from inventory_ledger.errors import InvalidInput

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


def D(v: Any, *, field: str = "amount") -> Decimal:
    """
    Convert a numeric-ish value to Decimal safely.

    IMPORTANT:
    - Never call Decimal(float) directly (binary float artifacts).
    - Use Decimal(str(x)) for int/float inputs.
    - Unlike a lenient parser, None/blank/NaN are rejected: money is never
      silently coerced to zero.
    """
    if isinstance(v, bool) or v is None:
        raise InvalidInput(f"{field} must be a number")
    if isinstance(v, Decimal):
        out = v
    elif isinstance(v, (int, float)):
        out = Decimal(str(v))
    elif isinstance(v, str):
        s = v.strip()
        try:
            out = Decimal(s)
        except InvalidOperation as e:
            raise InvalidInput(f"{field} is not a number: {v!r}") from e
    else:
        raise InvalidInput(f"{field} must be a number, got {type(v).__name__}")
    if not out.is_finite():
        raise InvalidInput(f"{field} must be finite")
    return out


def non_negative(v: Any, *, field: str) -> Decimal:
    out = D(v, field=field)
    if out < 0:
        raise InvalidInput(f"{field} must be >= 0")
    return out


def quantize_money(v: Decimal) -> Decimal:
    return v.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class ExtraCost:
    """
    Named additional charge (freight, fee, packaging) added on top of base cost.

    Order-preserving and never deduplicated: two costs may share a label.
    """

    label: str
    amount: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "label", str(self.label or "").strip())
        object.__setattr__(self, "amount", non_negative(self.amount, field=f"extra cost {self.label!r}"))

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "amount": str(self.amount)}

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> "ExtraCost":
        # Legacy rows use {descricao, valor}.
        label = d.get("label", d.get("descricao", ""))
        amount = d.get("amount", d.get("valor"))
        return ExtraCost(label=label, amount=amount)


def coerce_extra_costs(items: Iterable[Any] | None) -> tuple[ExtraCost, ...]:
    out: list[ExtraCost] = []
    for c in items or ():
        if isinstance(c, ExtraCost):
            out.append(c)
        elif isinstance(c, Mapping):
            out.append(ExtraCost.from_dict(c))
        elif isinstance(c, (tuple, list)) and len(c) == 2:
            out.append(ExtraCost(label=c[0], amount=c[1]))
        else:
            raise InvalidInput(f"unsupported extra cost shape: {c!r}")
    return tuple(out)


def sum_extra_costs(items: Iterable[ExtraCost]) -> Decimal:
    return sum((c.amount for c in items), ZERO)
