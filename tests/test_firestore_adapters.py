from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest
from google.api_core import exceptions as gexc

from inventory_ledger.catalog.models import ItemRef, Kit, Product
from inventory_ledger.errors import InvalidInput, Unavailable
from inventory_ledger.ledger.builder import build, recompute
from inventory_ledger.ledger.firestore import FirestoreCatalog, FirestoreLedgerSink, FirestoreMovementSource
from inventory_ledger.ledger.migration import BackfillMigrator
from inventory_ledger.ledger.models import LedgerEntry, MigrationScope, Movement, UnreadableMovement

pytestmark = pytest.mark.usefixtures("no_firestore_retry")


def _sale(entry_id: str, day: str, *, tenant_id: str = "t1") -> LedgerEntry:
    return build(
        {
            "id": entry_id,
            "kind": "sale",
            "date": day,
            "quantity": 3,
            "unit_cost": "10.00",
            "unit_price": "25.00",
            "extra_costs": [("frete", "5.00")],
        },
        tenant_id=tenant_id,
    )


def _seed_catalog(fake_db) -> None:
    fake_db.seed("tenants/t1/products/A", {"name": "Caneca", "custo_unitario": 10, "preco_venda": "25.00"})
    fake_db.seed("tenants/t1/products/B", {"name": "Caixa", "unit_cost": "7.50", "unit_price": "15.00"})
    fake_db.seed(
        "tenants/t1/kits/K",
        {
            "name": "Kit presente",
            "kit_items": [{"product_id": "A", "quantity": 2}, {"product_id": "B", "quantity": 1}],
            "preco_venda": "60.00",
            "custos_adicionais": [{"descricao": "embalagem", "valor": "2.50"}],
        },
    )


def test_insert_uses_create_and_rejects_duplicates(fake_db) -> None:
    sink = FirestoreLedgerSink(fake_db, tenant_id="t1")
    e = _sale("e1", "2024-05-01")
    assert sink.insert(e) is True
    assert sink.insert(e) is False

    doc = fake_db._store["tenants/t1/ledger_entries/e1"]
    assert doc["total_value"] == "75.00"
    assert doc["net_profit"] == "40.00"
    assert doc["date"] == "2024-05-01"
    assert doc["extra_costs"] == [{"label": "frete", "amount": "5.00"}]
    assert isinstance(doc["created_at"], datetime)
    assert doc["created_at"].utcoffset() == timedelta(0)


def test_document_round_trip(fake_db) -> None:
    sink = FirestoreLedgerSink(fake_db, tenant_id="t1")
    e = _sale("e1", "2024-05-01")
    sink.insert(e)
    got = sink.get("e1")
    assert got == e
    assert sink.get("nope") is None


def test_sink_rejects_other_tenant_entries(fake_db) -> None:
    sink = FirestoreLedgerSink(fake_db, tenant_id="t1")
    with pytest.raises(InvalidInput):
        sink.insert(_sale("e1", "2024-05-01", tenant_id="t2"))


def test_save_overwrites_recomputed_entry(fake_db) -> None:
    sink = FirestoreLedgerSink(fake_db, tenant_id="t1")
    e = _sale("e1", "2024-05-01")
    sink.insert(e)
    sink.save(recompute(e, {"quantity": 4}))
    assert fake_db._store["tenants/t1/ledger_entries/e1"]["total_value"] == "105.00"
    assert sink.get("e1").quantity == 4


def test_list_entries_filters_inclusive_date_range(fake_db) -> None:
    sink = FirestoreLedgerSink(fake_db, tenant_id="t1")
    for i, day in enumerate(["2024-04-30", "2024-05-01", "2024-05-15", "2024-05-31", "2024-06-01"]):
        sink.insert(_sale(f"e{i}", day))
    fake_db.seed("tenants/t1/ledger_entries/broken", {"date": "2024-05-02", "kind": "sale"})

    got = sink.list_entries(date(2024, 5, 1), "2024-05-31")
    assert [e.date.isoformat() for e in got] == ["2024-05-01", "2024-05-15", "2024-05-31"]


def test_has_migrated_queries_back_reference(fake_db) -> None:
    sink = FirestoreLedgerSink(fake_db, tenant_id="t1")
    import dataclasses

    sink.insert(dataclasses.replace(_sale("e1", "2024-05-01"), source_movement_id="mv-1"))
    assert sink.has_migrated("mv-1") is True
    assert sink.has_migrated("mv-2") is False


class _DownDb:
    def collection(self, name):  # noqa: ARG002
        return self

    def document(self, doc_id):  # noqa: ARG002
        return self

    def limit(self, n):  # noqa: ARG002
        return self

    def get(self):
        raise gexc.ServiceUnavailable("down")


def test_check_available_maps_errors_to_unavailable() -> None:
    with pytest.raises(Unavailable):
        FirestoreLedgerSink(_DownDb(), tenant_id="t1").check_available()


def test_catalog_reads_legacy_and_current_field_names(fake_db) -> None:
    _seed_catalog(fake_db)
    cat = FirestoreCatalog(fake_db, tenant_id="t1")

    a = cat.get_item(ItemRef.product("A"))
    assert isinstance(a, Product)
    assert (a.unit_cost, a.unit_price) == (Decimal("10"), Decimal("25.00"))

    k = cat.get_item(ItemRef.kit("K"))
    assert isinstance(k, Kit)
    assert [(c.product_id, c.quantity) for c in k.components] == [("A", 2), ("B", 1)]
    assert k.extra_costs[0].amount == Decimal("2.50")

    assert cat.get_item(ItemRef.product("missing")) is None
    assert isinstance(cat.get_component("K"), Kit)


def test_movement_source_parses_filters_and_reports_malformed(fake_db) -> None:
    fake_db.seed(
        "tenants/t1/movements/m2",
        {"type": "OUT", "product_id": "A", "quantity": 2, "created_at": datetime(2024, 5, 2, tzinfo=timezone.utc)},
    )
    fake_db.seed(
        "tenants/t1/movements/m1",
        {"type": "IN", "product_id": "A", "quantity": 5, "created_at": "2024-05-01T12:00:00Z", "reference": "NF 1"},
    )
    fake_db.seed(
        "tenants/t1/movements/k1",
        {"type": "OUT", "kit_id": "K", "quantity": 1, "created_at": "2024-05-03T12:00:00Z"},
    )
    fake_db.seed("tenants/t1/movements/bad1", {"type": "OUT", "quantity": 1, "created_at": "2024-05-03T12:00:00Z"})
    fake_db.seed("tenants/t1/movements/bad2", {"type": "SIDEWAYS", "product_id": "A", "created_at": "2024-05-03"})
    fake_db.seed("tenants/t2/movements/other", {"type": "IN", "product_id": "A", "created_at": "2024-05-03"})

    src = FirestoreMovementSource(fake_db, tenant_id="t1")
    products = src.list_movements(scope=MigrationScope.PRODUCTS)
    assert [m.id for m in products] == ["m1", "m2", "bad2"]
    assert products[0].reference == "NF 1"
    assert all(isinstance(m, Movement) and m.tenant_id == "t1" for m in products[:2])
    assert isinstance(products[2], UnreadableMovement)
    assert products[2].item_ref == ItemRef.product("A")

    assert [m.id for m in src.list_movements(scope=MigrationScope.KITS)] == ["k1"]
    # Unreadable documents have no usable direction, so every filter reports them.
    assert [m.id for m in src.list_movements(scope=MigrationScope.PRODUCTS, direction="out")] == ["m2", "bad2"]


def test_movement_source_direction_filter_reads_either_field_name(fake_db) -> None:
    fake_db.seed(
        "tenants/t1/movements/m1",
        {"direction": "OUT", "product_id": "A", "quantity": 1, "created_at": "2024-05-01T12:00:00Z"},
    )
    fake_db.seed(
        "tenants/t1/movements/m2",
        {"type": "OUT", "product_id": "A", "quantity": 1, "created_at": "2024-05-02T12:00:00Z"},
    )
    fake_db.seed(
        "tenants/t1/movements/m3",
        {"direction": "IN", "product_id": "A", "quantity": 1, "created_at": "2024-05-03T12:00:00Z"},
    )

    src = FirestoreMovementSource(fake_db, tenant_id="t1")
    assert [m.id for m in src.list_movements(scope=MigrationScope.PRODUCTS)] == ["m1", "m2", "m3"]
    assert [m.id for m in src.list_movements(scope=MigrationScope.PRODUCTS, direction="out")] == ["m1", "m2"]
    assert [m.id for m in src.list_movements(scope=MigrationScope.PRODUCTS, direction="in")] == ["m3"]


def test_backfill_counts_unreadable_movements_as_errors(fake_db) -> None:
    _seed_catalog(fake_db)
    fake_db.seed(
        "tenants/t1/movements/good",
        {"type": "IN", "product_id": "A", "quantity": 2, "created_at": "2024-05-01T12:00:00Z"},
    )
    fake_db.seed(
        "tenants/t1/movements/broken",
        {"type": "IN", "product_id": "A", "quantity": 2, "created_at": "not-a-date"},
    )

    result = BackfillMigrator(
        FirestoreCatalog(fake_db, tenant_id="t1"),
        FirestoreLedgerSink(fake_db, tenant_id="t1"),
        tenant_id="t1",
        reporting_tz=ZoneInfo("America/Sao_Paulo"),
    ).run(FirestoreMovementSource(fake_db, tenant_id="t1"), "products")

    assert (result.total, result.created, result.skipped, result.errors) == (2, 1, 0, 1)
    assert [f.movement_id for f in result.failures] == ["broken"]
    assert result.message == "1 created, 0 skipped, 1 errors"


def test_end_to_end_backfill_over_firestore_is_idempotent(fake_db) -> None:
    _seed_catalog(fake_db)
    for i in range(4):
        fake_db.seed(
            f"tenants/t1/movements/m{i}",
            {"type": "OUT", "kit_id": "K", "quantity": 1, "created_at": f"2024-05-0{i + 1}T15:00:00Z"},
        )

    def _run():
        return BackfillMigrator(
            FirestoreCatalog(fake_db, tenant_id="t1"),
            FirestoreLedgerSink(fake_db, tenant_id="t1"),
            tenant_id="t1",
            batch_size=2,
            reporting_tz=ZoneInfo("America/Sao_Paulo"),
        ).run(FirestoreMovementSource(fake_db, tenant_id="t1"), "kits")

    first = _run()
    second = _run()
    assert (first.total, first.created, first.errors) == (4, 4, 0)
    assert (second.created, second.skipped) == (0, 4)

    entries = FirestoreLedgerSink(fake_db, tenant_id="t1").list_entries("2024-05-01", "2024-05-31")
    assert len(entries) == 4
    # Kit cost: 2 x 10.00 + 7.50 + 2.50 packaging.
    assert {e.unit_cost for e in entries} == {Decimal("30.00")}
    assert {e.net_profit for e in entries} == {Decimal("30.00")}
