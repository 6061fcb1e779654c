from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import pytest

from inventory_ledger.common.config import get_settings


class _FakeSnap:
    def __init__(self, *, doc_id: str, exists: bool, data: dict[str, Any] | None):
        self.id = doc_id
        self.exists = bool(exists)
        self._data = dict(data or {})

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)


@dataclass
class _FakeDocRef:
    store: dict[str, dict[str, Any]]
    path: str

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    def collection(self, name: str) -> "_FakeCollection":
        return _FakeCollection(store=self.store, path=f"{self.path}/{name}")

    def create(self, data: dict[str, Any]) -> None:
        from google.api_core.exceptions import AlreadyExists

        if self.path in self.store:
            raise AlreadyExists("already exists")
        self.store[self.path] = dict(data)

    def set(self, data: dict[str, Any], merge: bool = False) -> None:  # noqa: FBT001,FBT002
        if merge and self.path in self.store:
            merged = dict(self.store[self.path])
            merged.update(dict(data))
            self.store[self.path] = merged
        else:
            self.store[self.path] = dict(data)

    def get(self) -> _FakeSnap:
        if self.path in self.store:
            return _FakeSnap(doc_id=self.id, exists=True, data=self.store[self.path])
        return _FakeSnap(doc_id=self.id, exists=False, data=None)


_OPS = {
    "==": lambda a, b: a == b,
    ">=": lambda a, b: a >= b,
    "<=": lambda a, b: a <= b,
}


@dataclass
class _FakeQuery:
    store: dict[str, dict[str, Any]]
    path: str
    filters: tuple = ()
    order: Optional[str] = None
    limit_n: Optional[int] = None

    def where(self, field_path: str, op: str, value: Any) -> "_FakeQuery":
        return _FakeQuery(self.store, self.path, self.filters + ((field_path, op, value),), self.order, self.limit_n)

    def order_by(self, field_path: str) -> "_FakeQuery":
        return _FakeQuery(self.store, self.path, self.filters, field_path, self.limit_n)

    def limit(self, n: int) -> "_FakeQuery":
        return _FakeQuery(self.store, self.path, self.filters, self.order, n)

    def stream(self) -> list[_FakeSnap]:
        prefix = f"{self.path}/"
        out: list[_FakeSnap] = []
        for p, data in self.store.items():
            if not p.startswith(prefix) or "/" in p[len(prefix):]:
                continue
            ok = True
            for f, op, v in self.filters:
                # Firestore leaves out documents that lack a filtered field.
                if f not in data or not _OPS[op](data[f], v):
                    ok = False
                    break
            if ok:
                out.append(_FakeSnap(doc_id=p[len(prefix):], exists=True, data=data))
        if self.order:
            out = sorted((s for s in out if self.order in s.to_dict()), key=lambda s: s.to_dict()[self.order])
        if self.limit_n is not None:
            out = out[: self.limit_n]
        return out

    def get(self) -> list[_FakeSnap]:
        return self.stream()


@dataclass
class _FakeCollection(_FakeQuery):
    def document(self, doc_id: str) -> _FakeDocRef:
        return _FakeDocRef(store=self.store, path=f"{self.path}/{doc_id}")


@dataclass
class _FakeFirestore:
    _store: dict[str, dict[str, Any]] = field(default_factory=dict)

    def collection(self, name: str) -> _FakeCollection:
        return _FakeCollection(store=self._store, path=name)

    def seed(self, path: str, data: dict[str, Any]) -> None:
        self._store[path] = dict(data)


@pytest.fixture
def fake_db() -> _FakeFirestore:
    return _FakeFirestore()


@pytest.fixture
def no_firestore_retry(monkeypatch):
    from inventory_ledger.ledger import firestore as ledger_fs

    monkeypatch.setattr(ledger_fs, "with_firestore_retry", lambda fn: fn())


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
