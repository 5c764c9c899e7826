from __future__ import annotations

from datetime import timedelta

import pytest

from yande_popular.engine import DedupStore
from yande_popular.errors import StoreError
from yande_popular.infra import SQLiteManager


def test_insert_and_contains(store: DedupStore) -> None:
    assert not store.contains("1001")
    store.insert("1001")
    assert store.contains("1001")
    assert store.count() == 1


def test_record_at_exact_window_is_kept(store: DedupStore, clock) -> None:
    store.insert("1")
    clock.advance(timedelta(days=7).total_seconds())
    assert store.evict_older_than(timedelta(days=7)) == 0
    assert store.contains("1")

    clock.advance(1)
    assert store.evict_older_than(timedelta(days=7)) == 1
    assert not store.contains("1")


def test_zero_window_evicts_once_clock_moves(store: DedupStore, clock) -> None:
    store.insert("a")
    store.insert("b")
    assert store.evict_older_than(0) == 0
    clock.advance(0.5)
    assert store.evict_older_than(0) == 2
    assert store.count() == 0


def test_reinsert_resets_age(store: DedupStore, clock) -> None:
    store.insert("42")
    clock.advance(timedelta(days=6).total_seconds())
    store.insert("42")
    clock.advance(timedelta(days=2).total_seconds())
    assert store.evict_older_than(timedelta(days=7)) == 0
    assert store.contains("42")


def test_recent_orders_newest_first(store: DedupStore, clock) -> None:
    for key in ("first", "second", "third"):
        store.insert(key)
        clock.advance(10)
    rows = store.recent(limit=2)
    assert [key for key, _ in rows] == ["third", "second"]
    assert rows[0][1] > rows[1][1]


def test_reset_clears_everything(store: DedupStore) -> None:
    store.insert("1")
    store.insert("2")
    store.reset()
    assert store.count() == 0
    assert not store.contains("1")
    store.insert("3")
    assert store.contains("3")


def test_records_survive_reopen(tmp_path) -> None:
    path = tmp_path / "history.db"
    first = SQLiteManager()
    DedupStore(first, path, clock=lambda: 100.0).insert("77")
    first.close_all()

    second = SQLiteManager()
    reopened = DedupStore(second, path, clock=lambda: 100.0)
    assert reopened.contains("77")
    second.close_all()


def test_closed_connection_raises_store_error(tmp_path) -> None:
    manager = SQLiteManager()
    store = DedupStore(manager, tmp_path / "history.db")
    manager.close_all()
    with pytest.raises(StoreError):
        store.contains("1")
    with pytest.raises(StoreError):
        store.insert("1")
