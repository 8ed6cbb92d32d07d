"""Provider id validation.

CONTRACT
- Inputs: Provider names
- Outputs (required):
  - validate_provider_name() returns the validated name or raises
- Invariants:
  - Provider names match `[A-Za-z0-9][A-Za-z0-9_-]{0,31}`
  - A valid name is also a safe filename (no separators, no dots)
- Failure:
  - Raises ValueError on invalid names
"""

from __future__ import annotations

import re

_PROVIDER_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,31}$")


def validate_provider_name(name: str) -> str:
    if not _PROVIDER_NAME_RE.fullmatch(name):
        raise ValueError(
            f"Invalid provider name {name!r}. Use 1-32 chars: letters/digits, plus '_-'. "
            "Must start with a letter or digit."
        )
    return name
