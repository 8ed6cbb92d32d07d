"""Environment health checks.

CONTRACT
- Inputs: GatewayConfig
- Outputs (required):
  - DoctorReport (ok=bool, items=[(name, status, details)])
- Invariants:
  - One item per configured provider (executable presence, version line,
    breaker state), plus the breaker state directory and the prompt rules file
  - Does not modify breaker state beyond lazy pruning
- Failure:
  - Returns DoctorReport with ok=False if no provider executable is found
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from .breaker import BreakerStore
from .config import GatewayConfig
from .prompting import rules_stats
from .util.shell import probe, which


@dataclass(frozen=True)
class DoctorItem:
    name: str
    status: str
    details: str


@dataclass(frozen=True)
class DoctorReport:
    ok: bool
    items: list[DoctorItem]


def doctor_report(cfg: GatewayConfig, breaker: BreakerStore, verbose: bool = False) -> DoctorReport:
    items: list[DoctorItem] = []
    found_any = False

    state_dir = cfg.state_dir
    if state_dir.exists() and not os.access(state_dir, os.W_OK):
        items.append(DoctorItem("breaker state", "WARN", f"{state_dir} is not writable"))
    else:
        items.append(DoctorItem("breaker state", "OK", str(state_dir)))

    rules = rules_stats(cfg.rules_path)
    if rules.loaded:
        items.append(DoctorItem("prompt rules", "OK", f"{rules.path} (~{rules.tokens} tokens)"))
    else:
        items.append(DoctorItem("prompt rules", "INFO", f"{rules.path} not found; framed prompts carry no rules"))

    for name, d in sorted(cfg.providers.items()):
        path = which(d.executable)
        if path is None:
            hint = f" (install: {d.install_hint})" if d.install_hint else ""
            items.append(DoctorItem(name, "INFO", f"{d.executable} not found; provider unavailable{hint}"))
            continue
        found_any = True

        details = path
        if verbose:
            version = probe([path, "--version"])
            if version.returncode == 0 and version.output:
                details = f"{path} ({version.output})"

        status = breaker.is_open(name)
        if status.open:
            items.append(
                DoctorItem(name, "WARN", f"{details}; circuit open, {status.remaining_minutes} min remaining")
            )
        else:
            items.append(DoctorItem(name, "OK", details))

    return DoctorReport(ok=found_any, items=items)
