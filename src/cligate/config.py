"""Configuration models.

CONTRACT
- Inputs: YAML file path (config.yaml) or dictionary data
- Outputs (required):
  - Validated GatewayConfig (providers, breaker settings, state dir, rules file)
- Invariants:
  - Built-in providers are always present unless overridden by name
  - Provider names match `[A-Za-z0-9][A-Za-z0-9_-]{0,31}`
  - Defaults: 3 failures in a 5 min window open the breaker for 10 min;
    provider output is capped at 1 MiB
- Failure:
  - Raises ConfigError on invalid YAML, schema or names
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from .breaker import DEFAULT_COOLDOWN_S, DEFAULT_THRESHOLD, DEFAULT_WINDOW_S
from .invoker import DEFAULT_MAX_OUTPUT_BYTES
from .providers.base import OptionSpec, ProviderDescriptor
from .providers.common import OUTPUT_FILTERS
from .providers.registry import BUILTIN_PROVIDERS
from .util.ids import validate_provider_name
from .util.paths import default_home


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class BreakerConfig:
    threshold: int = DEFAULT_THRESHOLD
    window_s: float = DEFAULT_WINDOW_S
    cooldown_s: float = DEFAULT_COOLDOWN_S


@dataclass(frozen=True)
class GatewayConfig:
    providers: dict[str, ProviderDescriptor] = field(default_factory=lambda: dict(BUILTIN_PROVIDERS))
    breaker: BreakerConfig = field(default_factory=BreakerConfig)
    state_dir: Path = field(default_factory=lambda: default_home() / "breaker")
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    events_path: Path | None = None
    rules_path: Path = field(default_factory=lambda: default_home() / "CORE_RULES.md")

    def provider(self, name: str) -> ProviderDescriptor:
        try:
            return self.providers[name]
        except KeyError:
            known = ", ".join(sorted(self.providers))
            raise ConfigError(f"Unknown provider {name!r} (known: {known})") from None


_CUES = {
    "type": "array",
    "items": {
        "oneOf": [
            {"type": "string"},
            {"type": "array", "items": {"type": "string"}, "minItems": 1},
        ]
    },
}
_ARGS = {"type": "array", "items": {"type": "string"}}

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "providers": {
            "type": "object",
            "propertyNames": {"pattern": "^[A-Za-z0-9][A-Za-z0-9_-]{0,31}$"},
            "additionalProperties": {
                "type": "object",
                "properties": {
                    "executable": {"type": "string", "minLength": 1},
                    "timeout_s": {"type": "number", "exclusiveMinimum": 0},
                    "model_flag": {"type": ["string", "null"]},
                    "default_model": {"type": ["string", "null"]},
                    "prompt_flag": {"type": ["string", "null"]},
                    "pre_prompt_args": _ARGS,
                    "post_prompt_args": _ARGS,
                    "options": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "field": {"type": "string"},
                                "flag": {"oneOf": [{"type": "string"}, _ARGS]},
                                "takes_value": {"type": "boolean"},
                                "unless": {"type": ["string", "null"]},
                                "default": {},
                            },
                            "required": ["field", "flag"],
                            "additionalProperties": False,
                        },
                    },
                    "auth_cues": _CUES,
                    "rate_limit_cues": _CUES,
                    "login_hint": {"type": ["string", "null"]},
                    "install_hint": {"type": ["string", "null"]},
                    "output_filter": {"type": ["string", "null"]},
                    "models": {"type": "object", "additionalProperties": {"type": "string"}},
                    "diagnose_stdout": {"type": "boolean"},
                    "end_of_options": {"type": "boolean"},
                },
                "additionalProperties": False,
            },
        },
        "breaker": {
            "type": "object",
            "properties": {
                "threshold": {"type": "integer", "minimum": 1},
                "window_s": {"type": "number", "exclusiveMinimum": 0},
                "cooldown_s": {"type": "number", "exclusiveMinimum": 0},
            },
            "additionalProperties": False,
        },
        "state_dir": {"type": "string"},
        "max_output_bytes": {"type": "integer", "minimum": 1},
        "events_path": {"type": ["string", "null"]},
        "rules_path": {"type": "string"},
    },
    "additionalProperties": False,
}


def _cues(raw: list[Any]) -> tuple[Any, ...]:
    return tuple(c if isinstance(c, str) else tuple(c) for c in raw)


def _option(raw: dict[str, Any]) -> OptionSpec:
    flag = raw["flag"]
    return OptionSpec(
        field=str(raw["field"]),
        flag=(flag,) if isinstance(flag, str) else tuple(flag),
        takes_value=bool(raw.get("takes_value", True)),
        unless=raw.get("unless"),
        default=raw.get("default"),
    )


def _descriptor(name: str, raw: dict[str, Any], base: ProviderDescriptor | None) -> ProviderDescriptor:
    changes: dict[str, Any] = {}
    for key in ("executable", "model_flag", "default_model", "prompt_flag",
                "login_hint", "install_hint", "output_filter"):
        if key in raw:
            changes[key] = raw[key]
    for key in ("diagnose_stdout", "end_of_options"):
        if key in raw:
            changes[key] = bool(raw[key])
    if "timeout_s" in raw:
        changes["timeout_s"] = float(raw["timeout_s"])
    for key in ("pre_prompt_args", "post_prompt_args"):
        if key in raw:
            changes[key] = tuple(raw[key])
    for key in ("auth_cues", "rate_limit_cues"):
        if key in raw:
            changes[key] = _cues(raw[key])
    if "options" in raw:
        changes["options"] = tuple(_option(o) for o in raw["options"])
    if "models" in raw:
        changes["models"] = dict(raw["models"])

    filt = changes.get("output_filter")
    if filt and filt not in OUTPUT_FILTERS:
        raise ConfigError(f"Provider {name!r}: unknown output_filter {filt!r}")

    if base is not None:
        return replace(base, **changes)
    if "executable" not in changes:
        raise ConfigError(f"Provider {name!r}: 'executable' is required for new providers")
    return ProviderDescriptor(name=name, **changes)


def config_from_dict(data: dict[str, Any]) -> GatewayConfig:
    import jsonschema  # lazy import

    try:
        jsonschema.validate(instance=data, schema=CONFIG_SCHEMA)
    except jsonschema.ValidationError as e:
        raise ConfigError(f"Invalid config schema: {e.message}") from e

    providers = dict(BUILTIN_PROVIDERS)
    for name, raw in (data.get("providers") or {}).items():
        try:
            validate_provider_name(name)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        providers[name] = _descriptor(name, raw or {}, providers.get(name))

    b = data.get("breaker") or {}
    defaults = GatewayConfig()
    events = data.get("events_path")
    return GatewayConfig(
        providers=providers,
        breaker=BreakerConfig(
            threshold=int(b.get("threshold", DEFAULT_THRESHOLD)),
            window_s=float(b.get("window_s", DEFAULT_WINDOW_S)),
            cooldown_s=float(b.get("cooldown_s", DEFAULT_COOLDOWN_S)),
        ),
        state_dir=Path(data["state_dir"]).expanduser() if "state_dir" in data else defaults.state_dir,
        max_output_bytes=int(data.get("max_output_bytes", DEFAULT_MAX_OUTPUT_BYTES)),
        events_path=Path(events).expanduser() if events else None,
        rules_path=Path(data["rules_path"]).expanduser() if "rules_path" in data else defaults.rules_path,
    )


def default_config_path() -> Path:
    return default_home() / "config.yaml"


def load_config(path: Path | None = None) -> GatewayConfig:
    if path is None:
        path = default_config_path()
        if not path.exists():
            return GatewayConfig()
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a mapping")
    return config_from_dict(data)


if __name__ == "__main__":
    import argparse
    import sys

    parser = argparse.ArgumentParser(description="Config Loader CLI")
    parser.add_argument("--config", help="Path to config.yaml")
    args = parser.parse_args()

    try:
        cfg = load_config(Path(args.config) if args.config else None)
        print(f"Loaded {len(cfg.providers)} providers: {', '.join(sorted(cfg.providers))}")
        print(f"Breaker: {cfg.breaker}")
        print(f"State dir: {cfg.state_dir}")
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
