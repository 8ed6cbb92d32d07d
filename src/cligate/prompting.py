"""Prompt framing with a shared rules preamble.

CONTRACT
- Inputs: Task prompt; optional rules text, additional context, task type
- Outputs (required):
  - build_prompt() returns the framed prompt:
    `# Context and Rules` / `# Additional Context` / `# Task`
  - detect_task_type() returns one of TASK_TYPES
  - rules_stats() describes the rules file (for doctor)
- Invariants:
  - The task text is kept verbatim as the last section
  - Rules are included for code task types, or when no type is given, and
    never when include_rules is False
  - Framing is opt-in per request; a payload without `context`, `task_type`
    or `include_rules` is forwarded unchanged
- Failure:
  - A missing or unreadable rules file is logged and treated as empty
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

CODE_TASK_TYPES = ("code_review", "implementation", "debugging", "refactoring")
TASK_TYPES = CODE_TASK_TYPES + ("explanation", "general")

# Checked in order; the first type with a matching keyword wins.
_TASK_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("code_review", ("review", "check")),
    ("implementation", ("implement", "create", "add")),
    ("debugging", ("debug", "fix", "error")),
    ("refactoring", ("refactor", "improve", "optimize")),
    ("explanation", ("explain", "what", "how")),
)
_TASK_PATTERNS = tuple(
    (task_type, re.compile(r"\b(?:" + "|".join(words) + r")", re.IGNORECASE))
    for task_type, words in _TASK_KEYWORDS
)


def detect_task_type(prompt: str) -> str:
    for task_type, pattern in _TASK_PATTERNS:
        if pattern.search(prompt):
            return task_type
    return "general"


def estimate_tokens(text: str) -> int:
    """Rough token count (about four characters per token)."""
    return math.ceil(len(text) / 4)


def load_rules(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning(f"Rules file {path} not readable ({e}); prompts are framed without rules")
        return ""


def build_prompt(
    task: str,
    *,
    rules: str = "",
    context: str | None = None,
    task_type: str | None = None,
    include_rules: bool = True,
) -> str:
    parts: list[str] = []
    if include_rules and rules and (task_type is None or task_type in CODE_TASK_TYPES):
        parts += ["# Context and Rules\n", rules, "\n---\n\n"]
    if context:
        parts += ["# Additional Context\n", context, "\n\n"]
    parts += ["# Task\n", task]
    return "".join(parts)


def smart_build_prompt(
    task: str,
    *,
    rules: str = "",
    context: str | None = None,
    task_type: str | None = None,
    include_rules: bool = True,
) -> str:
    """build_prompt() with the task type detected from the prompt when not given."""
    return build_prompt(
        task,
        rules=rules,
        context=context,
        task_type=task_type or detect_task_type(task),
        include_rules=include_rules,
    )


@dataclass(frozen=True)
class RulesStats:
    path: Path
    loaded: bool
    tokens: int


def rules_stats(path: Path) -> RulesStats:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        text = ""
    return RulesStats(path=path, loaded=bool(text), tokens=estimate_tokens(text))


if __name__ == "__main__":
    import argparse

    from .util.paths import default_home

    parser = argparse.ArgumentParser(description="Show the framed prompt for a task")
    parser.add_argument("task", help="Task prompt")
    parser.add_argument("--context", help="Additional context")
    parser.add_argument("--task-type", choices=TASK_TYPES, help="Task type (default: detect)")
    parser.add_argument("--rules", default=str(default_home() / "CORE_RULES.md"), help="Rules file")
    parser.add_argument("--no-rules", action="store_true", help="Do not include the rules")
    args = parser.parse_args()

    print(
        smart_build_prompt(
            args.task,
            rules=load_rules(Path(args.rules)),
            context=args.context,
            task_type=args.task_type,
            include_rules=not args.no_rules,
        )
    )
