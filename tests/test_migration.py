from __future__ import annotations

import dataclasses
import signal
import threading
import time
from datetime import date, datetime, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from inventory_ledger.catalog.models import InMemoryCatalog, ItemRef, Kit, KitComponent, Product
from inventory_ledger.errors import InvalidInput, Unavailable
from inventory_ledger.ledger.migration import (
    BackfillMigrator,
    DirectionFilter,
    DryRunLedgerSink,
    InMemoryLedgerSink,
    cancel_on_signals,
    parse_direction_filter,
    stable_entry_id,
)
from inventory_ledger.ledger.models import Direction, EntryKind, MigrationScope, Movement, UnreadableMovement

SP = ZoneInfo("America/Sao_Paulo")


def _catalog() -> InMemoryCatalog:
    return InMemoryCatalog(
        [
            Product(id="A", name="Caneca", unit_cost="10.00", unit_price="25.00"),
            Product(id="B", name="Caixa", unit_cost="7.50", unit_price="15.00"),
            Kit(id="K", name="Kit presente", components=(KitComponent("A", 2), KitComponent("B", 1))),
            Kit(id="KP", name="Kit precificado", components=(KitComponent("A", 1),), unit_price="40.00"),
        ]
    )


def _mv(mid: str, direction: str = "OUT", ref: ItemRef | None = None, qty: int = 1, **kw) -> Movement:
    return Movement(
        id=mid,
        tenant_id=kw.pop("tenant_id", "t1"),
        direction=direction,
        item_ref=ref or ItemRef.product("A"),
        quantity=qty,
        timestamp=kw.pop("timestamp", datetime(2024, 5, 10, 15, 0, tzinfo=timezone.utc)),
        **kw,
    )


def _migrator(sink=None, **kw) -> BackfillMigrator:
    return BackfillMigrator(
        _catalog(),
        sink if sink is not None else InMemoryLedgerSink(),
        tenant_id="t1",
        batch_size=kw.pop("batch_size", 50),
        reporting_tz=SP,
        clock=kw.pop("clock", time.monotonic),
    )


def test_ten_movements_three_already_migrated() -> None:
    movements = [_mv(f"m{i}", "OUT" if i % 2 else "IN") for i in range(10)]
    sink = InMemoryLedgerSink()
    m = _migrator(sink)
    m.migrate(movements[:3], MigrationScope.PRODUCTS)

    run = m.migrate(movements, MigrationScope.PRODUCTS)
    assert (run.total, run.created, run.skipped, run.errors) == (10, 7, 3, 0)
    assert run.message == "7 created, 3 skipped, 0 errors"
    assert len(sink.entries) == 10


def test_migrate_twice_is_idempotent() -> None:
    movements = [_mv("p1"), _mv("p2", "IN"), _mv("k1", ref=ItemRef.kit("KP"))]
    sink = InMemoryLedgerSink()
    m = _migrator(sink)

    first = m.migrate(movements, "products")
    second = m.migrate(movements, "products")
    assert (first.total, first.created) == (2, 2)
    assert (second.created, second.skipped, second.errors) == (0, 2, 0)
    assert len(sink.entries) == 2


def test_scope_selects_kits_only() -> None:
    movements = [_mv("p1"), _mv("k1", ref=ItemRef.kit("KP"), qty=2)]
    sink = InMemoryLedgerSink()
    run = _migrator(sink).migrate(movements, MigrationScope.KITS)
    assert (run.total, run.created) == (1, 1)
    (entry,) = sink.entries
    assert entry.item_ref == ItemRef.kit("KP")
    assert entry.unit_cost == Decimal("10.00")
    assert entry.total_value == Decimal("80.00")
    assert entry.net_profit == Decimal("60.00")


def test_partial_failures_do_not_stop_the_run() -> None:
    movements = [
        _mv("ok1"),
        _mv("missing", ref=ItemRef.product("nope")),
        _mv("zero", qty=0),
        _mv("ok2", "IN"),
        _mv("unpriced_kit", ref=ItemRef.kit("K")),
        _mv("foreign", tenant_id="t2"),
    ]
    run = _migrator().migrate(movements, "products")
    assert (run.total, run.created, run.errors) == (5, 2, 3)
    assert [f.movement_id for f in run.failures] == ["missing", "zero", "foreign"]
    assert "Unresolvable" in run.failures[0].reason

    kit_run = _migrator().migrate(movements, "kits")
    assert (kit_run.total, kit_run.errors) == (1, 1)
    assert "no sale price" in kit_run.failures[0].reason


def test_kit_purchase_without_price_is_fine() -> None:
    run = _migrator().migrate([_mv("k_in", "IN", ref=ItemRef.kit("K"), qty=2)], "kits")
    assert (run.created, run.errors) == (1, 0)


def test_entry_shape_for_purchase_and_sale() -> None:
    sink = InMemoryLedgerSink()
    movements = [
        _mv("in1", "IN", qty=4, reference="NF 123", created_by="u1"),
        # 02:00 UTC is still the previous day in Sao Paulo.
        _mv("out1", "OUT", qty=3, timestamp=datetime(2024, 3, 1, 2, 0, tzinfo=timezone.utc)),
    ]
    _migrator(sink).migrate(movements, "products")
    by_src = {e.source_movement_id: e for e in sink.entries}

    purchase = by_src["in1"]
    assert purchase.kind is EntryKind.PURCHASE
    assert purchase.id == stable_entry_id(tenant_id="t1", movement_id="in1")
    assert purchase.total_value == purchase.total_cost == Decimal("40.00")
    assert purchase.net_profit == Decimal("0.00")
    assert purchase.description == "Entrada - Caneca (NF 123) - Migração"
    assert purchase.created_by == "u1"
    assert purchase.category == "Operacional"

    sale = by_src["out1"]
    assert sale.kind is EntryKind.SALE
    assert sale.date == date(2024, 2, 29)
    assert sale.description == "Saída - Caneca - Migração"
    assert (sale.total_value, sale.total_cost, sale.net_profit, sale.margin_percent) == (
        Decimal("75.00"),
        Decimal("30.00"),
        Decimal("45.00"),
        Decimal("60.00"),
    )


def test_direction_filter() -> None:
    movements = [_mv("a", "IN"), _mv("b", "OUT"), _mv("c", "IN")]
    run = _migrator().migrate(movements, "products", direction="in")
    assert (run.total, run.created) == (2, 2)
    with pytest.raises(InvalidInput):
        _migrator().migrate(movements, "products", direction="sideways")


def test_batches_report_progress() -> None:
    seen = []
    movements = [_mv(f"m{i}") for i in range(10)]
    run = _migrator(batch_size=3).migrate(movements, "products", on_batch=seen.append)
    assert run.batches == 4
    assert [s.created for s in seen] == [3, 6, 9, 10]
    assert run.aborted is False


def test_cancel_stops_before_next_batch() -> None:
    cancel = threading.Event()
    sink = InMemoryLedgerSink()
    movements = [_mv(f"m{i}") for i in range(10)]

    run = _migrator(sink, batch_size=3).migrate(
        movements, "products", cancel=cancel, on_batch=lambda _r: cancel.set()
    )
    assert run.aborted is True
    assert (run.batches, run.created) == (1, 3)
    assert run.message == "3 created, 0 skipped, 0 errors (aborted after 1 batches)"
    # Created entries stay; a later run picks up the rest.
    resumed = _migrator(sink, batch_size=3).migrate(movements, "products")
    assert (resumed.created, resumed.skipped) == (7, 3)


def test_deadline_stops_before_next_batch() -> None:
    ticks = iter([0.0, 5.0, 50.0])
    movements = [_mv(f"m{i}") for i in range(10)]
    run = _migrator(batch_size=3, clock=lambda: next(ticks)).migrate(movements, "products", deadline_s=30)
    assert run.aborted is True
    assert (run.batches, run.created) == (2, 6)


class _DownSink(InMemoryLedgerSink):
    def check_available(self) -> None:
        raise ConnectionError("sink down")


class _DownSource:
    def list_movements(self, *, scope, direction):  # noqa: ARG002
        raise TimeoutError("source down")


class _ListSource:
    def __init__(self, movements):
        self.movements = movements

    def list_movements(self, *, scope, direction):  # noqa: ARG002
        return list(self.movements)


def test_unreachable_collaborators_fail_whole_run() -> None:
    with pytest.raises(Unavailable):
        _migrator(_DownSink()).migrate([_mv("a")], "products")
    with pytest.raises(Unavailable):
        _migrator().run(_DownSource(), "products")


def test_run_reads_source_then_migrates() -> None:
    run = _migrator().run(_ListSource([_mv("a"), _mv("b", "IN")]), "products", direction="out")
    assert (run.total, run.created) == (1, 1)


class _RacySink(InMemoryLedgerSink):
    """Idempotency check always misses; only the uniqueness constraint protects."""

    def has_migrated(self, movement_id: str) -> bool:  # noqa: ARG002
        return False


def test_duplicate_rejected_by_sink_counts_as_skipped() -> None:
    sink = _RacySink()
    movements = [_mv("a"), _mv("b")]
    _migrator(sink).migrate(movements, "products")
    run = _migrator(sink).migrate(movements, "products")
    assert (run.created, run.skipped, run.errors) == (0, 2, 0)
    assert len(sink.entries) == 2


class _FlakySink(InMemoryLedgerSink):
    def insert(self, entry) -> bool:
        if entry.source_movement_id == "bad":
            raise RuntimeError("write failed")
        return super().insert(entry)


def test_insert_failure_is_a_per_movement_error() -> None:
    run = _migrator(_FlakySink()).migrate([_mv("a"), _mv("bad"), _mv("c")], "products")
    assert (run.created, run.errors) == (2, 1)
    assert run.failures[0].reason.startswith("RuntimeError")


def test_stable_entry_id_is_deterministic_and_tenant_scoped() -> None:
    a = stable_entry_id(tenant_id="t1", movement_id="m1")
    assert a == stable_entry_id(tenant_id="t1", movement_id="m1")
    assert a != stable_entry_id(tenant_id="t2", movement_id="m1")
    assert len(a) == 48


def test_dry_run_sink_never_writes_through() -> None:
    inner = InMemoryLedgerSink()
    _migrator(inner).migrate([_mv("old")], "products")

    dry = DryRunLedgerSink(inner)
    run = _migrator(dry).migrate([_mv("old"), _mv("new")], "products")
    assert (run.created, run.skipped) == (1, 1)
    assert [e.source_movement_id for e in dry.entries] == ["new"]
    assert [e.source_movement_id for e in inner.entries] == ["old"]


def test_migration_run_to_dict() -> None:
    run = _migrator().migrate([_mv("missing", ref=ItemRef.product("nope"))], "products")
    d = run.to_dict()
    assert d["scope"] == "products"
    assert d["errors"] == 1
    assert d["failures"][0]["movement_id"] == "missing"


def test_direction_filter_parsing() -> None:
    assert parse_direction_filter(None) is DirectionFilter.ALL
    assert parse_direction_filter(" OUT ") is DirectionFilter.OUT
    assert DirectionFilter.IN.matches(Direction.IN)
    assert not DirectionFilter.IN.matches(Direction.OUT)
    assert DirectionFilter.ALL.matches(Direction.OUT)
    with pytest.raises(InvalidInput):
        parse_direction_filter("sideways")


def test_movement_accepts_direction_enum_and_survives_replace() -> None:
    out = _mv("m1", direction=Direction.OUT)
    assert out.direction is Direction.OUT
    assert _mv("m2", direction=Direction.IN).direction is Direction.IN
    assert _mv("m3", direction=" in ").direction is Direction.IN

    bumped = dataclasses.replace(out, quantity=2)
    assert (bumped.direction, bumped.quantity) == (Direction.OUT, 2)

    run = _migrator().migrate([out, bumped], "products")
    # Same movement id twice: the second copy is already migrated.
    assert (run.created, run.skipped, run.errors) == (1, 1, 0)


def test_unreadable_movements_count_as_errors_in_scope() -> None:
    movements = [
        _mv("ok", direction="IN"),
        UnreadableMovement(id="broken", item_ref=ItemRef.product("A"), reason="InvalidInput: bad timestamp"),
        UnreadableMovement(id="kit-broken", item_ref=ItemRef.kit("K"), reason="InvalidInput: bad timestamp"),
    ]
    run = _migrator().migrate(movements, "products", direction="in")
    assert (run.total, run.created, run.errors) == (2, 1, 1)
    assert [(f.movement_id, f.reason) for f in run.failures] == [("broken", "InvalidInput: bad timestamp")]


def test_signal_sets_cancel_and_stops_at_batch_boundary() -> None:
    cancel = threading.Event()
    before = signal.getsignal(signal.SIGINT)
    movements = [_mv(f"m{i}") for i in range(6)]

    with cancel_on_signals(cancel):
        run = _migrator(batch_size=2).migrate(
            movements, "products", cancel=cancel, on_batch=lambda _r: signal.raise_signal(signal.SIGINT)
        )
    assert cancel.is_set()
    assert run.aborted is True
    assert (run.batches, run.created) == (1, 2)
    assert signal.getsignal(signal.SIGINT) is before


def test_second_signal_interrupts_immediately() -> None:
    cancel = threading.Event()
    with pytest.raises(KeyboardInterrupt):
        with cancel_on_signals(cancel):
            signal.raise_signal(signal.SIGINT)
            signal.raise_signal(signal.SIGINT)
    assert cancel.is_set()
