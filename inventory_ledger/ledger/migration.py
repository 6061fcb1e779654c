from __future__ import annotations

"""
Backfill Migrator: historical stock movements -> ledger entries, exactly once.

Per movement: PENDING -> CREATED | SKIPPED | ERRORED
- SKIPPED: the sink already holds an entry for this movement, or rejects the
  insert as a duplicate (uniqueness on the movement back-reference lives in
  the sink, which makes concurrent runs safe)
- ERRORED: unresolvable item/component, invalid valuation inputs, a kit sale
  with no price, an unreadable source document, or a failed sink call.
  Recorded, logged, never raised.

Movements are processed in bounded batches. Cancellation and the deadline
are checked only between batches; entries already created stay.
"""

import hashlib
import logging
import signal
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, tzinfo
from enum import Enum
from typing import Any, Callable, Iterable, Iterator, Optional, Protocol, Union

from inventory_ledger.catalog.models import Catalog, Item, Kit
from inventory_ledger.common.config import get_settings
from inventory_ledger.common.logging import bind_run_id, get_run_id, log_event
from inventory_ledger.common.money import ZERO
from inventory_ledger.common.timeutils import reporting_date
from inventory_ledger.errors import InvalidInput, Unavailable, Unresolvable
from inventory_ledger.ledger.models import (
    Direction,
    EntryKind,
    LedgerEntry,
    MigrationRun,
    MigrationScope,
    Movement,
    MovementFailure,
    UnreadableMovement,
)
from inventory_ledger.ledger.valuation import price, resolve_unit_cost
from inventory_ledger.tenancy.context import TenantContext

logger = logging.getLogger(__name__)


class DirectionFilter(str, Enum):
    ALL = "all"
    IN = "in"
    OUT = "out"

    def matches(self, direction: Direction) -> bool:
        if self is DirectionFilter.ALL:
            return True
        return direction.value.lower() == self.value


def parse_direction_filter(v: Any) -> DirectionFilter:
    try:
        return DirectionFilter(str(v or "all").strip().lower())
    except ValueError as e:
        raise InvalidInput(f"direction must be one of all|in|out, got {v!r}") from e


class MovementSource(Protocol):
    def list_movements(
        self, *, scope: MigrationScope, direction: DirectionFilter
    ) -> Iterable[Union[Movement, UnreadableMovement]]:
        """Movements in scope; documents that name an in-scope item but fail to parse come back as UnreadableMovement."""
        ...


class LedgerSink(Protocol):
    def check_available(self) -> None:
        """Raise if the sink cannot be reached."""
        ...

    def has_migrated(self, movement_id: str) -> bool:
        ...

    def insert(self, entry: LedgerEntry) -> bool:
        """Persist a new entry. False when the uniqueness constraint rejects it."""
        ...


class InMemoryLedgerSink:
    """
    Dict-backed sink for tests and dry runs.

    Enforces the same uniqueness as the Firestore sink: one entry per id and
    one entry per source movement.
    """

    def __init__(self, entries: Iterable[LedgerEntry] = ()) -> None:
        self._lock = threading.Lock()
        self._by_id: dict[str, LedgerEntry] = {}
        self._by_movement: dict[str, str] = {}
        for e in entries:
            self.insert(e)

    def check_available(self) -> None:
        return None

    def has_migrated(self, movement_id: str) -> bool:
        with self._lock:
            return movement_id in self._by_movement

    def insert(self, entry: LedgerEntry) -> bool:
        with self._lock:
            if entry.id in self._by_id:
                return False
            if entry.source_movement_id is not None:
                if entry.source_movement_id in self._by_movement:
                    return False
                self._by_movement[entry.source_movement_id] = entry.id
            self._by_id[entry.id] = entry
            return True

    @property
    def entries(self) -> list[LedgerEntry]:
        with self._lock:
            return list(self._by_id.values())


class DryRunLedgerSink:
    """
    Read-through wrapper for dry runs: availability and idempotency checks hit
    the real sink, inserts are only recorded locally.
    """

    def __init__(self, inner: LedgerSink) -> None:
        self._inner = inner
        self._recorded = InMemoryLedgerSink()

    def check_available(self) -> None:
        self._inner.check_available()

    def has_migrated(self, movement_id: str) -> bool:
        return self._recorded.has_migrated(movement_id) or self._inner.has_migrated(movement_id)

    def insert(self, entry: LedgerEntry) -> bool:
        return self._recorded.insert(entry)

    @property
    def entries(self) -> list[LedgerEntry]:
        return self._recorded.entries


def stable_entry_id(*, tenant_id: str, movement_id: str) -> str:
    raw = f"ledger_migration|{tenant_id}|{movement_id}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:48]


@contextmanager
def cancel_on_signals(
    cancel: threading.Event, signals: tuple[int, ...] = (signal.SIGINT, signal.SIGTERM)
) -> Iterator[threading.Event]:
    """
    Route SIGINT/SIGTERM to `cancel` for the duration of the block so a run
    stops at the next batch boundary. A second signal while `cancel` is
    already set raises KeyboardInterrupt. Outside the main thread nothing is
    installed.
    """
    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    def _handler(signum, frame) -> None:  # type: ignore[no-untyped-def]
        if cancel.is_set():
            raise KeyboardInterrupt
        cancel.set()

    previous = {sig: signal.getsignal(sig) for sig in signals}
    for sig in signals:
        signal.signal(sig, _handler)
    try:
        yield cancel
    finally:
        for sig, prev in previous.items():
            signal.signal(sig, prev)


def describe_movement(movement: Movement, item_name: str) -> str:
    prefix = "Entrada" if movement.direction is Direction.IN else "Saída"
    ref = f" ({movement.reference})" if movement.reference else ""
    return f"{prefix} - {item_name}{ref} - Migração"


def summary_message(*, created: int, skipped: int, errors: int, aborted_after: Optional[int] = None) -> str:
    msg = f"{created} created, {skipped} skipped, {errors} errors"
    if aborted_after is not None:
        msg += f" (aborted after {aborted_after} batches)"
    return msg


class _Outcome(str, Enum):
    CREATED = "created"
    SKIPPED = "skipped"
    ERRORED = "errored"


@dataclass(slots=True)
class _Tally:
    created: int = 0
    skipped: int = 0
    errors: int = 0
    failures: list[MovementFailure] = field(default_factory=list)

    def snapshot(self, *, scope: MigrationScope, total: int, batches: int, aborted: bool) -> MigrationRun:
        return MigrationRun(
            scope=scope,
            total=total,
            created=self.created,
            skipped=self.skipped,
            errors=self.errors,
            message=summary_message(
                created=self.created,
                skipped=self.skipped,
                errors=self.errors,
                aborted_after=batches if aborted else None,
            ),
            aborted=aborted,
            batches=batches,
            failures=tuple(self.failures),
        )


class BackfillMigrator:
    """
    Converts movements into priced ledger entries for one tenant.

    Pricing per movement:
    - IN  -> PURCHASE at the item's resolved unit cost
    - OUT -> SALE at the item's catalog unit price (kits without a price error out)
    - entry date: the movement timestamp's calendar day in `reporting_tz`
    - entry id: derived from (tenant, movement id), so retries land on the same id
    """

    def __init__(
        self,
        catalog: Catalog,
        sink: LedgerSink,
        *,
        tenant_id: str,
        batch_size: Optional[int] = None,
        reporting_tz: Optional[tzinfo] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings()
        self._clock = clock
        self._catalog = catalog
        self._sink = sink
        self._tenant = TenantContext(tenant_id=tenant_id)
        self._batch_size = int(batch_size if batch_size is not None else settings.MIGRATION_BATCH_SIZE)
        if self._batch_size < 1:
            raise InvalidInput("batch_size must be >= 1")
        self._tz = reporting_tz or settings.reporting_tz
        self._category = settings.DEFAULT_CATEGORY

    @property
    def tenant_id(self) -> str:
        return self._tenant.tenant_id

    def run(self, source: MovementSource, scope: MigrationScope | str, **kwargs: Any) -> MigrationRun:
        """Read movements from `source` then `migrate` them. Source failures raise Unavailable."""
        sc = MigrationScope(scope)
        direction = parse_direction_filter(kwargs.get("direction", "all"))
        try:
            movements = list(source.list_movements(scope=sc, direction=direction))
        except Unavailable:
            raise
        except Exception as e:
            raise Unavailable(f"movement source unavailable: {e}") from e
        return self.migrate(movements, sc, **kwargs)

    def migrate(
        self,
        movements: Iterable[Union[Movement, UnreadableMovement]],
        scope: MigrationScope | str,
        *,
        direction: DirectionFilter | str = "all",
        cancel: Optional[threading.Event] = None,
        deadline_s: Optional[float] = None,
        on_batch: Optional[Callable[[MigrationRun], None]] = None,
    ) -> MigrationRun:
        sc = MigrationScope(scope)
        dfilter = parse_direction_filter(direction)
        if deadline_s is not None and deadline_s <= 0:
            raise InvalidInput("deadline_s must be > 0")

        try:
            self._sink.check_available()
        except Unavailable:
            raise
        except Exception as e:
            raise Unavailable(f"ledger sink unavailable: {e}") from e

        # An unreadable movement has no trustworthy direction; it is an error under any filter.
        selected = [
            m
            for m in movements
            if m.item_ref.kind is sc.item_kind
            and (isinstance(m, UnreadableMovement) or dfilter.matches(m.direction))
        ]
        total = len(selected)
        tally = _Tally()
        batches = 0
        aborted = False
        started = self._clock()

        with bind_run_id(run_id=get_run_id()):
            log_event(
                logger,
                "ledger.migration.started",
                tenant_id=self.tenant_id,
                scope=sc.value,
                direction=dfilter.value,
                total=total,
                batch_size=self._batch_size,
            )

            for offset in range(0, total, self._batch_size):
                if batches > 0:
                    stop = self._stop_reason(cancel=cancel, deadline_s=deadline_s, started=started)
                    if stop is not None:
                        aborted = True
                        log_event(
                            logger,
                            "ledger.migration.aborted",
                            severity="WARNING",
                            tenant_id=self.tenant_id,
                            reason=stop,
                            batches=batches,
                        )
                        break

                for mv in selected[offset : offset + self._batch_size]:
                    outcome, reason = self._migrate_one(mv)
                    if outcome is _Outcome.CREATED:
                        tally.created += 1
                    elif outcome is _Outcome.SKIPPED:
                        tally.skipped += 1
                    else:
                        tally.errors += 1
                        tally.failures.append(MovementFailure(movement_id=mv.id, reason=reason or "unknown"))

                batches += 1
                log_event(
                    logger,
                    "ledger.migration.batch",
                    tenant_id=self.tenant_id,
                    batch=batches,
                    created_count=tally.created,
                    skipped_count=tally.skipped,
                    error_count=tally.errors,
                )
                if on_batch is not None:
                    on_batch(tally.snapshot(scope=sc, total=total, batches=batches, aborted=False))

            result = tally.snapshot(scope=sc, total=total, batches=batches, aborted=aborted)
            log_event(
                logger,
                "ledger.migration.completed",
                message=result.message,
                tenant_id=self.tenant_id,
                scope=sc.value,
                total=result.total,
                created_count=result.created,
                skipped_count=result.skipped,
                error_count=result.errors,
                aborted=result.aborted,
            )
            return result

    def _stop_reason(
        self, *, cancel: Optional[threading.Event], deadline_s: Optional[float], started: float
    ) -> Optional[str]:
        if cancel is not None and cancel.is_set():
            return "cancelled"
        if deadline_s is not None and (self._clock() - started) >= deadline_s:
            return "deadline_exceeded"
        return None

    def _migrate_one(self, mv: Union[Movement, UnreadableMovement]) -> tuple[_Outcome, Optional[str]]:
        if isinstance(mv, UnreadableMovement):
            self._log_failure(mv.id, mv.reason)
            return _Outcome.ERRORED, mv.reason
        try:
            if mv.tenant_id != self.tenant_id:
                raise InvalidInput(f"movement belongs to tenant {mv.tenant_id!r}")
            if self._sink.has_migrated(mv.id):
                return _Outcome.SKIPPED, None
            entry = self.entry_for(mv)
            if not self._sink.insert(entry):
                return _Outcome.SKIPPED, None
            return _Outcome.CREATED, None
        except (InvalidInput, Unresolvable) as e:
            reason = f"{type(e).__name__}: {e}"
        except Exception as e:
            # Sink/catalog I/O failures are per-movement; the run continues.
            logger.exception("ledger.migration.movement_io_error movement_id=%s", mv.id)
            reason = f"{type(e).__name__}: {e}"

        self._log_failure(mv.id, reason)
        return _Outcome.ERRORED, reason

    def _log_failure(self, movement_id: str, reason: str) -> None:
        log_event(
            logger,
            "ledger.migration.movement_failed",
            severity="WARNING",
            tenant_id=self.tenant_id,
            movement_id=movement_id,
            reason=reason,
        )

    def _lookup(self, mv: Movement) -> Item:
        item = self._catalog.get_item(mv.item_ref)
        if item is None:
            raise Unresolvable(f"{mv.item_ref.kind.value} {mv.item_ref.id!r} not found")
        return item

    def entry_for(self, mv: Movement) -> LedgerEntry:
        """Price one movement into the entry the migrator would insert."""
        item = self._lookup(mv)
        kind = mv.direction.entry_kind
        unit_cost = resolve_unit_cost(item, catalog=self._catalog)

        catalog_price = item.unit_price
        if kind is EntryKind.SALE and catalog_price is None:
            label = "kit" if isinstance(item, Kit) else "item"
            raise InvalidInput(f"{label} {item.id!r} has no sale price")
        unit_price = catalog_price if catalog_price is not None else ZERO

        p = price(kind, mv.quantity, unit_cost, unit_price)
        entry_date: date = reporting_date(mv.timestamp, tz=self._tz)
        return LedgerEntry(
            id=stable_entry_id(tenant_id=self.tenant_id, movement_id=mv.id),
            tenant_id=self.tenant_id,
            kind=kind,
            date=entry_date,
            quantity=mv.quantity,
            unit_cost=unit_cost,
            unit_price=unit_price,
            total_value=p.total_value,
            total_cost=p.total_cost,
            net_profit=p.net_profit,
            margin_percent=p.margin_percent,
            description=describe_movement(mv, item.name or item.id),
            item_ref=mv.item_ref,
            category=self._category,
            source_movement_id=mv.id,
            created_by=mv.created_by,
        )
