"""Shared provider utilities.

CONTRACT
- Inputs: ProviderDescriptor, ProviderRequest, raw provider stdout
- Outputs:
  - build_argv() returns the argument vector (executable excluded)
  - apply_output_filter() returns cleaned response text
- Invariants:
  - Argument order: extra_args, model flag, pre_prompt_args, prompt, post_prompt_args
  - The prompt is always a single argv element (never shell-split)
  - A positional prompt starting with "-" follows "--" for CLIs that accept
    it (`end_of_options`); post_prompt_args then move before the "--".
    Other CLIs receive such a prompt unchanged
  - Unknown filter names raise instead of passing output through silently
- Failure:
  - Raises ValueError for an unknown output filter
"""

from __future__ import annotations

import re
from typing import Callable

from .base import ProviderDescriptor, ProviderRequest


def build_argv(descriptor: ProviderDescriptor, request: ProviderRequest) -> list[str]:
    args: list[str] = list(request.extra_args)
    if request.model and descriptor.model_flag:
        args.extend([descriptor.model_flag, request.model])
    args.extend(descriptor.pre_prompt_args)
    if descriptor.prompt_flag:
        args.append(descriptor.prompt_flag)
    elif descriptor.end_of_options and request.prompt.startswith("-"):
        # A positional prompt like "--help" would be parsed as an option.
        args.extend(descriptor.post_prompt_args)
        args.extend(["--", request.prompt])
        return args
    args.append(request.prompt)
    args.extend(descriptor.post_prompt_args)
    return args


def describe_argv(executable: str, args: list[str], prompt: str) -> str:
    """Printable argv for logs; the prompt is replaced by its length."""
    shown = [f"<prompt:{len(prompt)} chars>" if a == prompt else a for a in args]
    return " ".join([executable, *shown])


_TEXT_PART_RE = re.compile(r"TextPart\(\s*type='text',\s*text='([\s\S]*?)'\s*\)")
_META_LINE_RE = re.compile(r"^[A-Z][a-zA-Z]+\(")
_META_PREFIXES = ("StepBegin(", "StatusUpdate(", "ToolCall(", "ToolResult(", "TextPart(")


def text_parts_filter(stdout: str) -> str:
    """Extract the text of `TextPart(type='text', text='...')` records.

    When the output carries no TextPart records, structured metadata lines
    are dropped and the remaining lines are kept as-is.
    """
    parts = _TEXT_PART_RE.findall(stdout)
    if parts:
        return "\n".join(parts)
    kept = []
    for line in stdout.split("\n"):
        s = line.strip()
        if s.startswith(_META_PREFIXES):
            continue
        if s.startswith("type='text'") or s.startswith("text='") or s == ")":
            continue
        if _META_LINE_RE.match(s):
            continue
        kept.append(line)
    return "\n".join(kept)


OUTPUT_FILTERS: dict[str, Callable[[str], str]] = {
    "text_parts": text_parts_filter,
}


def apply_output_filter(name: str | None, stdout: str) -> str:
    if not name:
        return stdout
    try:
        fn = OUTPUT_FILTERS[name]
    except KeyError:
        raise ValueError(f"Unknown output filter: {name}") from None
    return fn(stdout)
