from __future__ import annotations

import copy
import threading
from typing import Iterable, Protocol

from .models import TypedItem


class RecordStore(Protocol):
    """Point operations the pre-traffic hook needs from the backing store."""

    def get_item(self, isbn: str, *, consistent: bool = False) -> TypedItem | None: ...

    def delete_item(self, isbn: str) -> None: ...


class BookTable(RecordStore, Protocol):
    name: str

    def put_item(self, item: TypedItem) -> None: ...

    def scan(self) -> list[TypedItem]: ...

    def batch_put(self, items: Iterable[TypedItem]) -> None: ...

    def batch_delete(self, isbns: Iterable[str]) -> None: ...


class InMemoryBookTable:
    """
    Table keyed by `isbn`. Every read is strongly consistent; `consistent` is
    accepted for interface parity.
    """

    def __init__(self, name: str = "books") -> None:
        self.name = name
        self._items: dict[str, TypedItem] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(item: TypedItem) -> str:
        try:
            return item["isbn"]["S"]
        except (KeyError, TypeError) as e:
            raise ValueError("item is missing its isbn key") from e

    def put_item(self, item: TypedItem) -> None:
        key = self._key(item)
        with self._lock:
            self._items[key] = copy.deepcopy(item)

    def get_item(self, isbn: str, *, consistent: bool = False) -> TypedItem | None:
        with self._lock:
            item = self._items.get(isbn)
            return copy.deepcopy(item) if item is not None else None

    def delete_item(self, isbn: str) -> None:
        # Deleting a missing key is a no-op.
        with self._lock:
            self._items.pop(isbn, None)

    def scan(self) -> list[TypedItem]:
        with self._lock:
            return [copy.deepcopy(v) for v in self._items.values()]

    def batch_put(self, items: Iterable[TypedItem]) -> None:
        staged = [(self._key(i), copy.deepcopy(i)) for i in items]
        with self._lock:
            for k, v in staged:
                self._items[k] = v

    def batch_delete(self, isbns: Iterable[str]) -> None:
        with self._lock:
            for k in isbns:
                self._items.pop(k, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class TableRegistry:
    """Resolves a backing-store name to a table."""

    def __init__(self) -> None:
        self._tables: dict[str, InMemoryBookTable] = {}
        self._lock = threading.Lock()

    def get_or_create(self, name: str) -> InMemoryBookTable:
        with self._lock:
            table = self._tables.get(name)
            if table is None:
                table = InMemoryBookTable(name)
                self._tables[name] = table
            return table

    def get(self, name: str) -> InMemoryBookTable:
        with self._lock:
            try:
                return self._tables[name]
            except KeyError:
                raise KeyError(f"Unknown table: {name}") from None
