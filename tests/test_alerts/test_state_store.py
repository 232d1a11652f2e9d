"""Tests for AlertStateStore — caching, coalesced flushes, failure handling."""

from __future__ import annotations

from stockly.alerts.state_store import AlertStateStore
from stockly.core.config import StateStoreConfig
from stockly.core.types import AlertStateSnapshot
from stockly.storage.kv import MemoryKeyValueStore


# ── Helpers ─────────────────────────────────────────────────────


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, secs: float) -> None:
        self.now += secs


class FlakyKV(MemoryKeyValueStore):
    """Memory store whose reads/writes fail for selected keys."""

    def __init__(self, data: dict[str, str] | None = None) -> None:
        super().__init__(data)
        self.fail_get: set[str] = set()
        self.fail_put: set[str] = set()
        self.get_count = 0

    async def get(self, key: str) -> str | None:
        self.get_count += 1
        if key in self.fail_get:
            raise ConnectionError("kv unavailable")
        return await super().get(key)

    async def put(self, key: str, value: str) -> None:
        if key in self.fail_put:
            raise ConnectionError("kv unavailable")
        await super().put(key, value)


def _snap(met: bool = True, price: float = 100.0) -> AlertStateSnapshot:
    return AlertStateSnapshot(last_condition_met=met, last_price=price, last_triggered_at=1.0)


def _store(
    kv: MemoryKeyValueStore | None = None,
    clock: FakeClock | None = None,
    **cfg: object,
) -> AlertStateStore:
    config = StateStoreConfig(**cfg)  # type: ignore[arg-type]
    return AlertStateStore(kv or MemoryKeyValueStore(), config, clock=clock or FakeClock())


# ── Keys ────────────────────────────────────────────────────────


class TestKeys:
    def test_default_key_layout(self) -> None:
        assert _store().key_for("abc") == "alert:abc:state"

    def test_custom_prefix(self) -> None:
        assert _store(key_prefix="stockly:alert:").key_for("abc") == "stockly:alert:abc:state"


# ── Loading ─────────────────────────────────────────────────────


class TestLoadAllStates:
    async def test_reads_stored_snapshots(self) -> None:
        kv = MemoryKeyValueStore({"alert:a1:state": _snap().to_json()})
        store = _store(kv)
        states = await store.load_all_states(["a1", "a2"])
        assert set(states) == {"a1"}
        assert states["a1"].last_condition_met is True

    async def test_corrupt_record_treated_as_absent(self) -> None:
        kv = MemoryKeyValueStore({
            "alert:a1:state": "{not json",
            "alert:a2:state": '{"lastConditionMet": "maybe"}',
            "alert:a3:state": _snap().to_json(),
        })
        states = await _store(kv).load_all_states(["a1", "a2", "a3"])
        assert set(states) == {"a3"}

    async def test_read_failure_treated_as_absent(self) -> None:
        kv = FlakyKV({"alert:a1:state": _snap().to_json(), "alert:a2:state": _snap().to_json()})
        kv.fail_get.add("alert:a1:state")
        states = await _store(kv).load_all_states(["a1", "a2"])
        assert set(states) == {"a2"}

    async def test_fresh_cache_skips_kv(self) -> None:
        kv = FlakyKV({"alert:a1:state": _snap().to_json()})
        clock = FakeClock()
        store = _store(kv, clock)
        await store.load_all_states(["a1"])
        reads = kv.get_count
        clock.advance(60)
        await store.load_all_states(["a1"])
        assert kv.get_count == reads

    async def test_stale_cache_rereads_kv(self) -> None:
        kv = FlakyKV({"alert:a1:state": _snap(price=1.0).to_json()})
        clock = FakeClock()
        store = _store(kv, clock, cache_ttl_secs=100)
        await store.load_all_states(["a1"])
        kv.data["alert:a1:state"] = _snap(price=2.0).to_json()
        clock.advance(101)
        states = await store.load_all_states(["a1"])
        assert states["a1"].last_price == 2.0

    async def test_new_alert_read_while_cache_fresh(self) -> None:
        kv = MemoryKeyValueStore({"alert:a1:state": _snap().to_json()})
        store = _store(kv)
        await store.load_all_states(["a1"])
        kv.data["alert:a2:state"] = _snap(price=7.0).to_json()
        states = await store.load_all_states(["a1", "a2"])
        assert states["a2"].last_price == 7.0

    async def test_pending_snapshot_wins_over_stored(self) -> None:
        kv = MemoryKeyValueStore({"alert:a1:state": _snap(met=True).to_json()})
        clock = FakeClock()
        store = _store(kv, clock, cache_ttl_secs=10)
        store.update_state_in_cache("a1", _snap(met=False, price=50.0))
        clock.advance(11)
        states = await store.load_all_states(["a1"])
        assert states["a1"].last_condition_met is False
        assert states["a1"].last_price == 50.0


# ── Flushing ────────────────────────────────────────────────────


class TestFlushPendingWrites:
    async def test_nothing_pending_is_noop(self) -> None:
        kv = MemoryKeyValueStore()
        assert await _store(kv).flush_pending_writes() == 0
        assert kv.write_count == 0

    async def test_first_flush_is_immediate(self) -> None:
        kv = MemoryKeyValueStore()
        store = _store(kv)
        store.update_state_in_cache("a1", _snap())
        store.update_state_in_cache("a2", _snap(met=False))
        assert await store.flush_pending_writes() == 2
        assert kv.write_count == 2
        assert store.pending_count == 0
        stored = AlertStateSnapshot.from_json(kv.data["alert:a2:state"])
        assert stored.last_condition_met is False

    async def test_flush_within_interval_is_deferred(self) -> None:
        kv = MemoryKeyValueStore()
        clock = FakeClock()
        store = _store(kv, clock)
        store.update_state_in_cache("a1", _snap())
        await store.flush_pending_writes(min_interval_secs=3600)

        clock.advance(300)
        store.update_state_in_cache("a1", _snap(price=101.0))
        assert await store.flush_pending_writes(min_interval_secs=3600) == 0
        assert kv.write_count == 1
        assert store.pending_count == 1
        # Deferred snapshot is still served back to the next pass.
        assert store.get_cached_state("a1").last_price == 101.0  # type: ignore[union-attr]

    async def test_coalesces_many_passes_into_one_write(self) -> None:
        kv = MemoryKeyValueStore()
        clock = FakeClock()
        store = _store(kv, clock)
        store.update_state_in_cache("a1", _snap(price=1.0))
        await store.flush_pending_writes(min_interval_secs=3600)

        for i in range(11):
            clock.advance(300)
            store.update_state_in_cache("a1", _snap(price=float(i)))
            await store.flush_pending_writes(min_interval_secs=3600)

        assert kv.write_count == 1
        clock.advance(300)
        assert await store.flush_pending_writes(min_interval_secs=3600) == 1
        assert kv.write_count == 2
        assert AlertStateSnapshot.from_json(kv.data["alert:a1:state"]).last_price == 10.0

    async def test_uses_configured_interval_by_default(self) -> None:
        kv = MemoryKeyValueStore()
        clock = FakeClock()
        store = _store(kv, clock, min_flush_interval_secs=60)
        store.update_state_in_cache("a1", _snap())
        await store.flush_pending_writes()
        clock.advance(61)
        store.update_state_in_cache("a1", _snap(price=2.0))
        assert await store.flush_pending_writes() == 1

    async def test_force_ignores_interval(self) -> None:
        kv = MemoryKeyValueStore()
        store = _store(kv)
        store.update_state_in_cache("a1", _snap())
        await store.flush_pending_writes()
        store.update_state_in_cache("a1", _snap(price=3.0))
        assert await store.flush_pending_writes(force=True) == 1
        assert kv.write_count == 2

    async def test_failed_write_stays_pending(self) -> None:
        kv = FlakyKV()
        kv.fail_put.add("alert:a1:state")
        clock = FakeClock()
        store = _store(kv, clock)
        store.update_state_in_cache("a1", _snap())
        store.update_state_in_cache("a2", _snap())
        assert await store.flush_pending_writes() == 1
        assert store.pending_count == 1
        assert "alert:a2:state" in kv.data

        kv.fail_put.clear()
        clock.advance(3601)
        assert await store.flush_pending_writes() == 1
        assert "alert:a1:state" in kv.data


# ── Maintenance ─────────────────────────────────────────────────


class TestMaintenance:
    async def test_invalidate_state(self) -> None:
        store = _store()
        store.update_state_in_cache("a1", _snap())
        store.invalidate_state("a1")
        assert store.get_cached_state("a1") is None
        assert store.pending_count == 0

    async def test_clear_cache_resets_flush_clock(self) -> None:
        kv = MemoryKeyValueStore()
        store = _store(kv)
        store.update_state_in_cache("a1", _snap())
        await store.flush_pending_writes()
        store.clear_cache()
        store.update_state_in_cache("a1", _snap(price=9.0))
        # No previous flush recorded, so this one is immediate.
        assert await store.flush_pending_writes() == 1

    async def test_stats(self) -> None:
        clock = FakeClock()
        store = _store(clock=clock)
        await store.load_all_states(["a1"])
        store.update_state_in_cache("a1", _snap())
        await store.flush_pending_writes()
        clock.advance(30)
        stats = store.stats()
        assert stats["cached_states"] == 1
        assert stats["pending_writes"] == 0
        assert stats["cache_age_secs"] == 30
        assert stats["secs_since_last_flush"] == 30
