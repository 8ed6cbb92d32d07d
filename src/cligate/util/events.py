"""Call event log.

CONTRACT
- Inputs: Provider id, call outcome, elapsed time
- Outputs:
  - Appends one JSON line per gateway call to the configured path
- Invariants:
  - Adds `ts_ms` timestamp automatically
  - Free text fields pass through the Redactor
  - Never records the prompt or the provider output
- Failure:
  - Raises OSError if the log path is not writable
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .redaction import Redactor


@dataclass
class EventLog:
    path: Path
    redactor: Redactor = field(default_factory=Redactor)

    def emit(self, **event: Any) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        event.setdefault("ts_ms", int(time.time() * 1000))
        if isinstance(event.get("message"), str):
            event["message"] = self.redactor.redact(event["message"])
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event, ensure_ascii=False) + "\n")

    def record_call(
        self,
        provider: str,
        *,
        outcome: str,
        elapsed_s: float,
        error_type: str | None = None,
        message: str | None = None,
    ) -> None:
        event: dict[str, Any] = {
            "event": "call",
            "provider": provider,
            "outcome": outcome,
            "elapsed_s": round(elapsed_s, 3),
        }
        if error_type is not None:
            event["error_type"] = error_type
        if message is not None:
            event["message"] = message
        self.emit(**event)

    def read(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        lines = self.path.read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in lines if line.strip()]
