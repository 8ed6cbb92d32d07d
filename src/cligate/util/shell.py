"""Executable lookup and short probe commands.

CONTRACT
- Inputs: Executable name, argv list, timeout
- Outputs (required):
  - which() returns an absolute path or None
  - probe() returns ProbeResult(returncode, output)
- Invariants:
  - probe never uses a shell (argv list only)
  - probe output is truncated to the first line
- Failure:
  - probe never raises; missing binaries and timeouts map to fixed return codes
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

PROBE_NOT_FOUND = 127
PROBE_TIMEOUT = 124


def which(cmd: str) -> str | None:
    # Absolute or relative paths are checked directly, like execvp does.
    if os.sep in cmd:
        p = Path(cmd)
        return str(p) if p.is_file() and os.access(p, os.X_OK) else None
    for p in os.environ.get("PATH", "").split(os.pathsep):
        if not p:
            continue
        candidate = Path(p) / cmd
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return str(candidate)
    return None


@dataclass(frozen=True)
class ProbeResult:
    returncode: int
    output: str


def probe(argv: list[str], timeout_s: float = 5) -> ProbeResult:
    """Run a short informational command (e.g. ``codex --version``)."""
    try:
        p = subprocess.run(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=timeout_s,
            text=True,
        )
    except FileNotFoundError:
        return ProbeResult(PROBE_NOT_FOUND, "")
    except subprocess.TimeoutExpired:
        return ProbeResult(PROBE_TIMEOUT, "")
    except OSError as e:
        return ProbeResult(1, str(e))
    lines = (p.stdout or "").strip().splitlines()
    return ProbeResult(p.returncode, lines[0] if lines else "")


if __name__ == "__main__":
    import argparse
    import sys

    parser = argparse.ArgumentParser(description="Locate an executable on PATH")
    parser.add_argument("cmd", help="Executable name")
    args = parser.parse_args()

    found = which(args.cmd)
    if found is None:
        print(f"{args.cmd}: not found", file=sys.stderr)
        sys.exit(1)
    print(found)
