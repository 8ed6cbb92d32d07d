"""Circuit breaker store.

CONTRACT
- Inputs: Provider id; injected StateBackend (file or memory) and clock
- Outputs (required):
  - is_open() -> BreakerStatus(open, remaining_s)
  - record_failure() / record_success() / reset() persist through the backend
- Invariants:
  - Failures are counted inside a trailing window; older entries are pruned
    lazily on access and the pruned list is persisted
  - Breaker opens at `threshold` counted failures and stays open while the
    oldest counted failure is younger than `cooldown_s`
  - Once the oldest counted failure is older than the cooldown the stored
    failures are cleared (self-heal)
  - Every read-modify-write span holds the store lock; state shared between
    separate processes is best-effort (last writer wins)
- Failure:
  - Unreadable state is logged and treated as empty; write errors propagate
"""

from __future__ import annotations

import json
import math
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Protocol

from loguru import logger
from pydantic import ValidationError

from .artifacts.schemas import BreakerRecord
from .util.paths import atomic_write_text, safe_filename

DEFAULT_THRESHOLD = 3
DEFAULT_WINDOW_S = 5 * 60
DEFAULT_COOLDOWN_S = 10 * 60


@dataclass
class BreakerState:
    failure_timestamps: list[float] = field(default_factory=list)
    last_success: float | None = None


@dataclass(frozen=True)
class BreakerStatus:
    open: bool
    remaining_s: float = 0.0
    recent_failures: int = 0

    @property
    def remaining_minutes(self) -> int:
        return math.ceil(self.remaining_s / 60) if self.remaining_s > 0 else 0


class StateBackend(Protocol):
    def load(self, provider_id: str) -> BreakerState: ...

    def save(self, provider_id: str, state: BreakerState) -> None: ...

    def delete(self, provider_id: str) -> None: ...

    def provider_ids(self) -> list[str]: ...


@dataclass
class MemoryBackend:
    """In-process backend (tests, embedding)."""

    states: dict[str, BreakerState] = field(default_factory=dict)

    def load(self, provider_id: str) -> BreakerState:
        s = self.states.get(provider_id)
        if s is None:
            return BreakerState()
        return BreakerState(list(s.failure_timestamps), s.last_success)

    def save(self, provider_id: str, state: BreakerState) -> None:
        self.states[provider_id] = BreakerState(list(state.failure_timestamps), state.last_success)

    def delete(self, provider_id: str) -> None:
        self.states.pop(provider_id, None)

    def provider_ids(self) -> list[str]:
        return sorted(self.states)


@dataclass
class FileBackend:
    """One JSON file per provider under `root`."""

    root: Path

    def path_for(self, provider_id: str) -> Path:
        return self.root / f"{safe_filename(provider_id, default='provider')}.json"

    def load(self, provider_id: str) -> BreakerState:
        p = self.path_for(provider_id)
        if not p.exists():
            return BreakerState()
        try:
            rec = BreakerRecord(**json.loads(p.read_text(encoding="utf-8")))
        except (OSError, ValueError, TypeError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable breaker state {p}: {e}")
            return BreakerState()
        return BreakerState(sorted(rec.failure_timestamps), rec.last_success)

    def save(self, provider_id: str, state: BreakerState) -> None:
        rec = BreakerRecord(
            provider=provider_id,
            failure_timestamps=list(state.failure_timestamps),
            last_success=state.last_success,
        )
        atomic_write_text(self.path_for(provider_id), rec.model_dump_json(indent=2) + "\n")

    def delete(self, provider_id: str) -> None:
        self.path_for(provider_id).unlink(missing_ok=True)

    def provider_ids(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(p.stem for p in self.root.glob("*.json"))


@dataclass
class BreakerStore:
    backend: StateBackend
    threshold: int = DEFAULT_THRESHOLD
    window_s: float = DEFAULT_WINDOW_S
    cooldown_s: float = DEFAULT_COOLDOWN_S
    clock: Callable[[], float] = time.time
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self) -> None:
        if self.threshold < 1:
            raise ValueError("breaker threshold must be >= 1")
        if self.window_s <= 0 or self.cooldown_s <= 0:
            raise ValueError("breaker window and cooldown must be positive")

    def _pruned(self, provider_id: str, now: float) -> BreakerState:
        state = self.backend.load(provider_id)
        recent = [ts for ts in state.failure_timestamps if now - ts < self.window_s]
        if len(recent) != len(state.failure_timestamps):
            state.failure_timestamps = recent
            self.backend.save(provider_id, state)
        return state

    def is_open(self, provider_id: str) -> BreakerStatus:
        with self._lock:
            now = self.clock()
            state = self._pruned(provider_id, now)
            failures = state.failure_timestamps
            if len(failures) < self.threshold:
                return BreakerStatus(open=False, recent_failures=len(failures))

            since_oldest = now - min(failures)
            if since_oldest < self.cooldown_s:
                return BreakerStatus(
                    open=True,
                    remaining_s=self.cooldown_s - since_oldest,
                    recent_failures=len(failures),
                )

            # Cooldown elapsed
            state.failure_timestamps = []
            self.backend.save(provider_id, state)
            logger.info(f"Circuit breaker for {provider_id} closed after cooldown")
            return BreakerStatus(open=False)

    def record_failure(self, provider_id: str) -> None:
        with self._lock:
            state = self.backend.load(provider_id)
            state.failure_timestamps.append(self.clock())
            self.backend.save(provider_id, state)
            logger.debug(f"Breaker {provider_id}: {len(state.failure_timestamps)} stored failures")

    def record_success(self, provider_id: str) -> None:
        with self._lock:
            state = self.backend.load(provider_id)
            state.failure_timestamps = []
            state.last_success = self.clock()
            self.backend.save(provider_id, state)

    def reset(self, provider_id: str) -> None:
        with self._lock:
            self.backend.delete(provider_id)

    def snapshot(self, provider_id: str) -> BreakerState:
        with self._lock:
            return self._pruned(provider_id, self.clock())


if __name__ == "__main__":
    import argparse
    import sys

    from .util.paths import default_home

    parser = argparse.ArgumentParser(description="Inspect circuit breaker state")
    parser.add_argument("provider", help="Provider id")
    parser.add_argument("--state-dir", default=str(default_home() / "breaker"), help="State directory")
    args = parser.parse_args()

    try:
        store = BreakerStore(FileBackend(Path(args.state_dir)))
        status = store.is_open(args.provider)
        print(json.dumps({"open": status.open, "remaining_minutes": status.remaining_minutes}))
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
