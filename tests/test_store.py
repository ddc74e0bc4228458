"""
Unit tests for the registry state stores.
Both implementations must give the same per-key atomicity.
"""

import threading
from datetime import timedelta

import pytest

from blindballot.store import LOCK_STRIPES, ManualClock, MemoryStore, SQLiteStore, Store


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path, epoch):
    clock = ManualClock(epoch)
    if request.param == "memory":
        yield MemoryStore(clock=clock)
    else:
        s = SQLiteStore(tmp_path / "state.db", clock=clock)
        yield s
        s.close()


def _run_threads(n, target):
    barrier = threading.Barrier(n)
    results = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        value = target()
        with lock:
            results.append(value)

    threads = [threading.Thread(target=worker) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


class TestBasicOperations:
    def test_missing_key(self, store):
        assert store.get("nope") is None
        assert not store.exists("nope")

    def test_put_if_absent(self, store):
        assert store.put_if_absent("k", {"v": 1})
        assert not store.put_if_absent("k", {"v": 2})
        assert store.get("k") == {"v": 1}

    def test_reads_are_copies(self, store):
        store.put_if_absent("k", {"items": [1]})
        value = store.get("k")
        value["items"].append(2)
        assert store.get("k") == {"items": [1]}

    def test_scan_by_prefix_in_key_order(self, store):
        for key in ["B_2", "A_1", "B_1", "B_10", "C_1"]:
            store.put_if_absent(key, {"key": key})
        assert [k for k, _ in store.scan("B_")] == ["B_1", "B_10", "B_2"]
        assert store.scan("Z_") == []

    def test_scan_prefix_is_literal(self, store):
        store.put_if_absent("B%_x", {})
        store.put_if_absent("Bab", {})
        assert [k for k, _ in store.scan("B%")] == ["B%_x"]


class TestTransactions:
    def test_commit_applies_writes(self, store):
        with store.transaction(["a", "b"]) as txn:
            txn.put("a", 1)
            txn.put("b", 2)
            assert txn.get("a") == 1  # own writes visible
        assert store.get("a") == 1
        assert store.get("b") == 2

    def test_exception_rolls_back(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction(["a"]) as txn:
                txn.put("a", 1)
                raise RuntimeError("abort")
        assert store.get("a") is None

    def test_undeclared_key_rejected(self, store):
        with store.transaction(["a"]) as txn:
            with pytest.raises(KeyError):
                txn.get("b")
            with pytest.raises(KeyError):
                txn.put("b", 1)

    def test_timestamp_comes_from_store_clock(self, store, epoch):
        with store.transaction(["a"]) as txn:
            assert txn.timestamp == epoch
        store.clock.advance(timedelta(hours=1))
        with store.transaction(["a"]) as txn:
            assert txn.timestamp == epoch + timedelta(hours=1)


class TestConcurrency:
    def test_concurrent_put_if_absent_single_winner(self, store):
        results = _run_threads(16, lambda: store.put_if_absent("flag", {"set": True}))
        assert results.count(True) == 1
        assert results.count(False) == 15

    def test_check_then_write_is_atomic(self, store):
        def claim():
            with store.transaction(["slot"]) as txn:
                if txn.exists("slot"):
                    return False
                txn.put("slot", {"owner": threading.get_ident()})
                return True

        results = _run_threads(12, claim)
        assert results.count(True) == 1

    def test_read_modify_write_counter(self, store):
        def bump():
            for _ in range(20):
                with store.transaction(["counter"]) as txn:
                    txn.put("counter", (txn.get("counter") or 0) + 1)

        _run_threads(6, bump)
        assert store.get("counter") == 120

    def test_multi_key_transactions_do_not_deadlock(self, store):
        def forward():
            for _ in range(20):
                with store.transaction(["x", "y"]) as txn:
                    txn.put("x", (txn.get("x") or 0) + 1)

        def backward():
            for _ in range(20):
                with store.transaction(["y", "x"]) as txn:
                    txn.put("y", (txn.get("y") or 0) + 1)

        threads = [threading.Thread(target=f) for f in (forward, backward, forward, backward)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)
        assert store.get("x") == 40
        assert store.get("y") == 40


class TestStoreInterface:
    def test_base_store_is_abstract(self):
        with pytest.raises(TypeError):
            Store()

    def test_subclass_must_implement_scan(self):
        class TransactionOnly(Store):
            def transaction(self, keys):
                raise RuntimeError

        with pytest.raises(TypeError):
            TransactionOnly()


class TestMemoryStoreLocks:
    def test_lock_pool_does_not_grow_with_keys(self):
        store = MemoryStore()
        for i in range(1000):
            store.put_if_absent(f"key-{i}", i)
        assert len(store._stripes) == LOCK_STRIPES
        assert store.get("key-999") == 999

    def test_keys_sharing_a_stripe(self):
        store = MemoryStore(stripes=1)
        with store.transaction(["a", "b", "c"]) as txn:
            txn.put("a", 1)
            txn.put("c", 3)
        assert store.get("a") == 1
        assert store.get("c") == 3

    def test_shared_stripes_under_contention(self):
        store = MemoryStore(stripes=2)

        def bump():
            for _ in range(20):
                with store.transaction(["p", "q", "r"]) as txn:
                    txn.put("p", (txn.get("p") or 0) + 1)

        _run_threads(5, bump)
        assert store.get("p") == 100
