"""Provider data model.

CONTRACT
- Inputs: JSON payload fields (prompt, model, provider options)
- Outputs (required):
  - ProviderRequest (immutable, validated prompt)
  - ProviderResult = Success | Failure
  - ProviderDescriptor (one data record per provider CLI)
- Invariants:
  - ErrorKind is closed; every member has exactly one wire name
  - ProviderRequest is immutable; prompt validity is checked by the Gateway
- Failure:
  - None (pure data)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Union

from ..artifacts.schemas import GatewayResponse


class ErrorKind(enum.Enum):
    AUTH = "auth"
    RATE_LIMIT = "limit"
    MISSING = "missing"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    CIRCUIT_OPEN = "circuit_breaker"
    UNKNOWN = "error"

    @property
    def wire_name(self) -> str:
        return self.value


INVALID_REQUEST = "invalid_request"


@dataclass(frozen=True)
class ProviderRequest:
    prompt: str
    model: str | None = None
    extra_args: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        # Accept any sequence but store a tuple so the request stays hashable.
        object.__setattr__(self, "extra_args", tuple(str(a) for a in self.extra_args))

    @property
    def is_valid(self) -> bool:
        return isinstance(self.prompt, str) and bool(self.prompt.strip())


@dataclass(frozen=True)
class Success:
    output: str

    @property
    def ok(self) -> bool:
        return True

    def to_response(self, provider: str) -> GatewayResponse:
        return GatewayResponse(provider=provider, success=True, output=self.output)


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str
    retryable: bool = False
    invalid_input: bool = False

    @property
    def ok(self) -> bool:
        return False

    @property
    def error_type(self) -> str:
        return INVALID_REQUEST if self.invalid_input else self.kind.wire_name

    def to_response(self, provider: str) -> GatewayResponse:
        return GatewayResponse(
            provider=provider,
            success=False,
            error_type=self.error_type,
            message=self.message,
            retryable=self.retryable,
        )


ProviderResult = Union[Success, Failure]


@dataclass(frozen=True)
class OptionSpec:
    """Maps one provider-specific payload field onto argv.

    A value option emits ``flag + [value]`` for a non-empty string value.
    A switch (``takes_value=False``) emits ``flag`` when the value is ``True``,
    unless the payload also carries the field named by ``unless``.
    """

    field: str
    flag: tuple[str, ...]
    takes_value: bool = True
    unless: str | None = None
    default: Any = None

    def render(self, payload: dict[str, Any]) -> list[str]:
        value = payload.get(self.field, self.default)
        if self.takes_value:
            if isinstance(value, str) and value:
                return [*self.flag, value]
            return []
        if value is True and not (self.unless and payload.get(self.unless)):
            return list(self.flag)
        return []


@dataclass(frozen=True)
class ProviderDescriptor:
    name: str
    executable: str
    timeout_s: float = 120.0
    model_flag: str | None = "--model"
    default_model: str | None = None
    prompt_flag: str | None = None
    pre_prompt_args: tuple[str, ...] = ()
    post_prompt_args: tuple[str, ...] = ()
    options: tuple[OptionSpec, ...] = ()
    auth_cues: tuple[Any, ...] = ()
    rate_limit_cues: tuple[Any, ...] = ()
    login_hint: str | None = None
    install_hint: str | None = None
    output_filter: str | None = None
    models: dict[str, str] = field(default_factory=dict)
    diagnose_stdout: bool = False
    end_of_options: bool = False

    def request_from_payload(self, payload: dict[str, Any]) -> ProviderRequest:
        extra: list[str] = []
        for opt in self.options:
            extra.extend(opt.render(payload))
        prompt = payload.get("prompt")
        model = payload.get("model") or self.default_model
        return ProviderRequest(
            prompt=prompt if isinstance(prompt, str) else "",
            model=model if isinstance(model, str) else None,
            extra_args=tuple(extra),
        )
