"""Unit tests for the TTL lock table."""

import pytest

from autosender.locks import LockStore


@pytest.fixture
def locks(conn, clock):
    return LockStore(conn, clock=clock)


@pytest.mark.unit
def test_set_if_absent_is_exclusive(locks):
    assert locks.set_if_absent("processing:a", "1", 300)
    assert not locks.set_if_absent("processing:a", "2", 300)
    assert locks.get("processing:a") == "1"


@pytest.mark.unit
def test_expired_lock_counts_as_absent(locks, clock):
    assert locks.set_if_absent("k", "old", 300)
    clock.advance(299)
    assert locks.get("k") == "old"
    clock.advance(1)
    assert locks.get("k") is None
    assert locks.set_if_absent("k", "new", 300)
    assert locks.get("k") == "new"


@pytest.mark.unit
def test_set_overwrites_and_delete_is_idempotent(locks):
    locks.set("k", "a", 10)
    locks.set("k", "b", 10)
    assert locks.get("k") == "b"
    locks.delete("k")
    locks.delete("k")
    assert locks.get("k") is None
