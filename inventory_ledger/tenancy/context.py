from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from inventory_ledger.errors import InvalidInput


@dataclass(frozen=True, slots=True)
class TenantContext:
    """
    Explicit tenant scope threaded through builder, migrator and sink calls.

    - tenant_id: organization identifier (string)
    - uid: acting user, recorded as `created_by` on entries when present
    """

    tenant_id: str
    uid: Optional[str] = None

    def __post_init__(self) -> None:
        tid = str(self.tenant_id or "").strip()
        if not tid:
            raise InvalidInput("tenant_id is required")
        if "/" in tid:
            raise InvalidInput("tenant_id must not contain '/'")
        object.__setattr__(self, "tenant_id", tid)
