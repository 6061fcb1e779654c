from __future__ import annotations

"""
Firestore collection naming for tenant-owned inventory/ledger data.

  tenants/{tid}/products/{product_id}
  tenants/{tid}/kits/{kit_id}
  tenants/{tid}/movements/{movement_id}
  tenants/{tid}/ledger_entries/{entry_id}

Path helpers only; reads/writes live in `inventory_ledger.ledger.firestore`.
"""

from dataclasses import dataclass


COLLECTION_TENANTS = "tenants"
COLLECTION_PRODUCTS = "products"
COLLECTION_KITS = "kits"
COLLECTION_MOVEMENTS = "movements"
COLLECTION_LEDGER_ENTRIES = "ledger_entries"


@dataclass(frozen=True)
class TenantPaths:
    tenant_id: str

    @property
    def tenant_doc(self) -> str:
        return f"{COLLECTION_TENANTS}/{self.tenant_id}"

    @property
    def products(self) -> str:
        return f"{self.tenant_doc}/{COLLECTION_PRODUCTS}"

    @property
    def kits(self) -> str:
        return f"{self.tenant_doc}/{COLLECTION_KITS}"

    @property
    def movements(self) -> str:
        return f"{self.tenant_doc}/{COLLECTION_MOVEMENTS}"

    @property
    def ledger_entries(self) -> str:
        return f"{self.tenant_doc}/{COLLECTION_LEDGER_ENTRIES}"


def tenant_collection(db, tenant_id: str, collection_name: str):
    """
    Build a tenant-scoped collection reference.

    Example:
      tenant_collection(db, tenant_id="t1", collection_name="ledger_entries")
      => /tenants/t1/ledger_entries
    """
    return db.collection(COLLECTION_TENANTS).document(tenant_id).collection(collection_name)
