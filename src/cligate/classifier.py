"""Failure classification.

CONTRACT
- Inputs: Diagnostic text (stderr, optionally stdout, plus exit metadata markers)
- Outputs (required):
  - Exactly one ErrorKind per failed invocation
- Invariants:
  - Case-insensitive; ordered, first matching rule wins
  - The rule table is data (ordered (kind, cues) pairs)
  - Pure: no I/O
- Failure:
  - None (falls back to ErrorKind.UNKNOWN)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Union

from .providers.base import ErrorKind

if TYPE_CHECKING:
    from .invoker import InvokeOutcome

# A cue is a substring, or a tuple of substrings that must all occur.
Cue = Union[str, tuple[str, ...]]

NOT_FOUND_MARKER = "[cligate: executable not found]"
TIMEOUT_MARKER = "[cligate: deadline exceeded]"


@dataclass(frozen=True)
class ClassifierRule:
    kind: ErrorKind
    cues: tuple[Cue, ...]

    def matches(self, text: str) -> bool:
        for cue in self.cues:
            if isinstance(cue, str):
                if cue.lower() in text:
                    return True
            elif all(part.lower() in text for part in cue):
                return True
        return False


_MISSING_CUES: tuple[Cue, ...] = (NOT_FOUND_MARKER,)

_AUTH_CUES: tuple[Cue, ...] = (
    "not logged in",
    "authentication",
    "unauthorized",
    "invalid credentials",
)

_RATE_LIMIT_CUES: tuple[Cue, ...] = (
    "rate limit",
    "quota",
    "billing hard limit",
    "insufficient_quota",
    "too many requests",
)

_SERVER_ERROR_CUES: tuple[Cue, ...] = (
    "500",
    "502",
    "503",
    "504",
    "internal server error",
    "service unavailable",
    "gateway timeout",
)

_TIMEOUT_CUES: tuple[Cue, ...] = (TIMEOUT_MARKER,)

DEFAULT_RULES: tuple[ClassifierRule, ...] = (
    ClassifierRule(ErrorKind.MISSING, _MISSING_CUES),
    ClassifierRule(ErrorKind.AUTH, _AUTH_CUES),
    ClassifierRule(ErrorKind.RATE_LIMIT, _RATE_LIMIT_CUES),
    ClassifierRule(ErrorKind.SERVER_ERROR, _SERVER_ERROR_CUES),
    ClassifierRule(ErrorKind.TIMEOUT, _TIMEOUT_CUES),
)


def build_rules(
    *,
    auth_cues: Iterable[Cue] = (),
    rate_limit_cues: Iterable[Cue] = (),
    base: tuple[ClassifierRule, ...] = DEFAULT_RULES,
) -> tuple[ClassifierRule, ...]:
    """Return ``base`` with provider-specific cues appended to the matching rules.

    Rule order is preserved, so provider cues never change precedence.
    """
    extra = {
        ErrorKind.AUTH: tuple(auth_cues),
        ErrorKind.RATE_LIMIT: tuple(rate_limit_cues),
    }
    rules: list[ClassifierRule] = []
    for rule in base:
        added = extra.get(rule.kind, ())
        rules.append(ClassifierRule(rule.kind, rule.cues + added) if added else rule)
    return tuple(rules)


def classify(diagnostic_text: str, rules: tuple[ClassifierRule, ...] = DEFAULT_RULES) -> ErrorKind:
    text = (diagnostic_text or "").lower()
    for rule in rules:
        if rule.matches(text):
            return rule.kind
    return ErrorKind.UNKNOWN


def diagnostic_text(outcome: InvokeOutcome, include_stdout: bool = False) -> str:
    """Concatenate stderr with the exit metadata markers of an invocation.

    Some CLIs (kimi) report configuration and API errors on stdout; for those
    ``include_stdout`` adds the captured stdout as well.
    """
    parts = [outcome.stderr]
    if include_stdout:
        parts.append(outcome.stdout)
    if outcome.start_failure is not None:
        if outcome.start_failure.not_found:
            parts.append(NOT_FOUND_MARKER)
        if outcome.start_failure.message:
            parts.append(outcome.start_failure.message)
    if outcome.timed_out:
        parts.append(TIMEOUT_MARKER)
    return "\n".join(p for p in parts if p)


if __name__ == "__main__":
    import argparse
    import sys

    parser = argparse.ArgumentParser(description="Classify provider diagnostic text")
    parser.add_argument("--text", help="Diagnostic text (default: read stdin)")
    args = parser.parse_args()

    text = args.text if args.text is not None else sys.stdin.read()
    print(classify(text).wire_name)
