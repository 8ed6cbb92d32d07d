import json
import threading

import pytest

from cligate.breaker import BreakerState, BreakerStore, FileBackend, MemoryBackend


def test_closed_without_failures(store):
    status = store.is_open("codex")
    assert status.open is False
    assert status.remaining_minutes == 0


@pytest.mark.parametrize("threshold", [1, 2, 3, 5])
def test_below_threshold_is_closed(threshold, clock):
    store = BreakerStore(MemoryBackend(), threshold=threshold, window_s=300, cooldown_s=600, clock=clock)
    for _ in range(threshold - 1):
        store.record_failure("p")
        clock.advance(1)
    assert store.is_open("p").open is False


def test_opens_at_threshold_with_bounded_cooldown(store, clock):
    for _ in range(3):
        store.record_failure("p")
        clock.advance(10)
    status = store.is_open("p")
    assert status.open is True
    assert 0 < status.remaining_s <= 600


def test_scenario_open_then_self_heal(store, backend, clock):
    # failures at t=0,1,2 minutes
    store.record_failure("p")
    clock.minutes(1)
    store.record_failure("p")
    clock.minutes(1)
    store.record_failure("p")

    status = store.is_open("p")
    assert status.open is True
    assert status.remaining_s == pytest.approx(8 * 60)
    assert status.remaining_minutes == 8

    clock.minutes(9)  # t=11
    status = store.is_open("p")
    assert status.open is False
    assert backend.load("p").failure_timestamps == []


def test_cooldown_clears_when_window_exceeds_cooldown(backend, clock):
    store = BreakerStore(backend, threshold=3, window_s=1800, cooldown_s=600, clock=clock)
    for _ in range(3):
        store.record_failure("p")
        clock.minutes(1)
    assert store.is_open("p").open is True

    clock.minutes(9)  # oldest failure is now 11 minutes old, still inside the window
    assert store.is_open("p").open is False
    assert backend.load("p").failure_timestamps == []


def test_remaining_minutes_rounds_up(store, clock):
    for _ in range(3):
        store.record_failure("p")
    clock.advance(30)
    assert store.is_open("p").remaining_minutes == 10


def test_success_clears_failures(store, backend, clock):
    store.record_failure("p")
    store.record_failure("p")
    store.record_success("p")
    assert store.is_open("p").open is False
    state = backend.load("p")
    assert state.failure_timestamps == []
    assert state.last_success == clock.now


def test_pruning_is_lazy_and_persisted(store, backend, clock):
    store.record_failure("p")
    clock.minutes(6)
    # Nothing pruned until a read.
    assert len(backend.load("p").failure_timestamps) == 1
    assert store.is_open("p").recent_failures == 0
    assert backend.load("p").failure_timestamps == []


def test_providers_are_independent(store):
    for _ in range(3):
        store.record_failure("a")
    assert store.is_open("a").open is True
    assert store.is_open("b").open is False


def test_reset(store):
    for _ in range(3):
        store.record_failure("p")
    store.reset("p")
    assert store.is_open("p").open is False


def test_invalid_settings():
    with pytest.raises(ValueError):
        BreakerStore(MemoryBackend(), threshold=0)
    with pytest.raises(ValueError):
        BreakerStore(MemoryBackend(), window_s=0)


def test_file_backend_roundtrip(tmp_path, clock):
    backend = FileBackend(tmp_path / "state")
    store = BreakerStore(backend, clock=clock)
    store.record_failure("codex")
    clock.advance(5)
    store.record_failure("codex")

    data = json.loads((tmp_path / "state" / "codex.json").read_text())
    assert data["provider"] == "codex"
    assert data["schema_version"] == 1
    assert len(data["failure_timestamps"]) == 2

    # A fresh store over the same directory sees the same state.
    other = BreakerStore(FileBackend(tmp_path / "state"), clock=clock)
    assert other.snapshot("codex").failure_timestamps == data["failure_timestamps"]
    assert backend.provider_ids() == ["codex"]


def test_file_backend_corrupt_state_is_empty(tmp_path):
    root = tmp_path / "state"
    root.mkdir()
    (root / "gemini.json").write_text("{not json")
    assert FileBackend(root).load("gemini") == BreakerState()


def test_file_backend_delete_missing_is_noop(tmp_path):
    FileBackend(tmp_path).delete("nothing")


def test_concurrent_failures_are_not_lost(tmp_path):
    store = BreakerStore(FileBackend(tmp_path), threshold=1000, window_s=300, cooldown_s=600)

    def worker():
        for _ in range(25):
            store.record_failure("p")

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(store.snapshot("p").failure_timestamps) == 100
