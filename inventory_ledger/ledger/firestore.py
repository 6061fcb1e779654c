from __future__ import annotations

"""
Firestore adapters for the ledger engine.

Paths (see `inventory_ledger.tenancy.paths`):
  tenants/{tenant_id}/ledger_entries/{entry_id}
  tenants/{tenant_id}/movements/{movement_id}
  tenants/{tenant_id}/products/{product_id}
  tenants/{tenant_id}/kits/{kit_id}

Money is stored as decimal strings; entry dates as 'YYYY-MM-DD' strings so
range queries compare lexicographically.
"""

import logging
from typing import Any, Optional, Union

from google.api_core import exceptions as gexc

from inventory_ledger.catalog.models import Item, ItemKind, ItemRef, kit_from_doc, product_from_doc
from inventory_ledger.common.logging import log_event
from inventory_ledger.common.timeutils import utc_now
from inventory_ledger.errors import InvalidInput, LedgerEngineError, Unavailable
from inventory_ledger.ledger.aggregation import check_window
from inventory_ledger.ledger.migration import DirectionFilter
from inventory_ledger.ledger.models import (
    LedgerEntry,
    MigrationScope,
    Movement,
    UnreadableMovement,
    movement_item_ref,
)
from inventory_ledger.persistence.firebase_client import get_firestore_client
from inventory_ledger.persistence.firestore_retry import with_firestore_retry
from inventory_ledger.tenancy.context import TenantContext
from inventory_ledger.tenancy.paths import (
    COLLECTION_KITS,
    COLLECTION_LEDGER_ENTRIES,
    COLLECTION_MOVEMENTS,
    COLLECTION_PRODUCTS,
    tenant_collection,
)

logger = logging.getLogger(__name__)


class _TenantStore:
    def __init__(self, db=None, *, tenant_id: str) -> None:
        self._tenant = TenantContext(tenant_id=tenant_id)
        self._db = db

    @property
    def tenant_id(self) -> str:
        return self._tenant.tenant_id

    @property
    def db(self):
        if self._db is None:
            self._db = get_firestore_client()
        return self._db

    def _col(self, name: str):
        return tenant_collection(self.db, self.tenant_id, name)


class FirestoreLedgerSink(_TenantStore):
    """
    Ledger entry store + migration sink.

    Semantics:
    - `insert(...)` uses Firestore `create()`: an existing doc id means the entry
      (or the movement it was migrated from) is already there -> returns False.
    - `save(...)` overwrites, for edited entries produced by `builder.recompute`.
    """

    def _entries(self):
        return self._col(COLLECTION_LEDGER_ENTRIES)

    def _check_tenant(self, entry: LedgerEntry) -> None:
        if entry.tenant_id != self.tenant_id:
            raise InvalidInput(f"entry tenant {entry.tenant_id!r} does not match sink tenant {self.tenant_id!r}")

    def check_available(self) -> None:
        try:
            with_firestore_retry(lambda: self._entries().limit(1).get())
        except Exception as e:
            raise Unavailable(f"ledger_entries unavailable for tenant {self.tenant_id!r}: {e}") from e

    def has_migrated(self, movement_id: str) -> bool:
        q = self._entries().where("source_movement_id", "==", str(movement_id)).limit(1)
        return len(list(with_firestore_retry(lambda: q.get()))) > 0

    def insert(self, entry: LedgerEntry) -> bool:
        self._check_tenant(entry)
        doc = entry.to_firestore_doc()
        doc["created_at"] = utc_now()
        ref = self._entries().document(entry.id)
        try:
            with_firestore_retry(lambda: ref.create(doc))
        except gexc.AlreadyExists:
            return False
        return True

    def save(self, entry: LedgerEntry) -> None:
        self._check_tenant(entry)
        doc = entry.to_firestore_doc()
        doc["updated_at"] = utc_now()
        ref = self._entries().document(entry.id)
        with_firestore_retry(lambda: ref.set(doc, merge=True))

    def get(self, entry_id: str) -> Optional[LedgerEntry]:
        snap = with_firestore_retry(lambda: self._entries().document(str(entry_id)).get())
        if not snap.exists:
            return None
        return LedgerEntry.from_firestore_doc(snap.id, snap.to_dict() or {})

    def list_entries(self, start: Any, end: Any) -> list[LedgerEntry]:
        """Entries dated within [start, end], ordered by date."""
        s, e = check_window(start, end)
        q = (
            self._entries()
            .where("date", ">=", s.isoformat())
            .where("date", "<=", e.isoformat())
            .order_by("date")
        )
        out: list[LedgerEntry] = []
        for snap in with_firestore_retry(lambda: list(q.stream())):
            try:
                out.append(LedgerEntry.from_firestore_doc(snap.id, snap.to_dict() or {}))
            except (LedgerEngineError, KeyError, TypeError, ValueError) as ex:
                log_event(
                    logger,
                    "ledger.entry.unreadable",
                    severity="WARNING",
                    tenant_id=self.tenant_id,
                    entry_id=snap.id,
                    error=str(ex),
                )
        return out


class FirestoreMovementSource(_TenantStore):
    """
    Reads historical stock movements.

    Scope and direction are applied after decoding, so legacy documents keyed
    by either `direction` or `type` filter the same way. A document whose item
    is in scope but whose other fields do not parse comes back as an
    UnreadableMovement; one that names no item at all is logged and dropped.
    """

    def list_movements(
        self, *, scope: MigrationScope, direction: DirectionFilter = DirectionFilter.ALL
    ) -> list[Union[Movement, UnreadableMovement]]:
        sc = MigrationScope(scope)
        d = DirectionFilter(direction)

        readable: list[Movement] = []
        unreadable: list[UnreadableMovement] = []
        for snap in with_firestore_retry(lambda: list(self._col(COLLECTION_MOVEMENTS).stream())):
            data = snap.to_dict() or {}
            try:
                ref = movement_item_ref(snap.id, data)
            except InvalidInput as ex:
                self._log_unreadable(snap.id, ex)
                continue
            if ref.kind is not sc.item_kind:
                continue
            try:
                mv = Movement.from_firestore_doc(tenant_id=self.tenant_id, movement_id=snap.id, data=data)
            except (LedgerEngineError, TypeError, ValueError) as ex:
                self._log_unreadable(snap.id, ex)
                unreadable.append(
                    UnreadableMovement(id=snap.id, item_ref=ref, reason=f"{type(ex).__name__}: {ex}")
                )
                continue
            if d.matches(mv.direction):
                readable.append(mv)

        readable.sort(key=lambda m: (m.timestamp, m.id))
        unreadable.sort(key=lambda u: u.id)
        return [*readable, *unreadable]

    def _log_unreadable(self, movement_id: str, ex: Exception) -> None:
        log_event(
            logger,
            "ledger.movement.unreadable",
            severity="WARNING",
            tenant_id=self.tenant_id,
            movement_id=movement_id,
            error=str(ex),
        )


class FirestoreCatalog(_TenantStore):
    """Catalog reads. Nothing is cached: kit roll-ups always see current product costs."""

    def _load(self, collection: str, item_id: str) -> Optional[dict[str, Any]]:
        snap = with_firestore_retry(lambda: self._col(collection).document(str(item_id)).get())
        if not snap.exists:
            return None
        return snap.to_dict() or {}

    def get_item(self, ref: ItemRef) -> Optional[Item]:
        if ref.kind is ItemKind.PRODUCT:
            data = self._load(COLLECTION_PRODUCTS, ref.id)
            return product_from_doc(ref.id, data) if data is not None else None
        data = self._load(COLLECTION_KITS, ref.id)
        return kit_from_doc(ref.id, data) if data is not None else None

    def get_component(self, product_id: str) -> Optional[Item]:
        item = self.get_item(ItemRef.product(product_id))
        if item is not None:
            return item
        return self.get_item(ItemRef.kit(product_id))

