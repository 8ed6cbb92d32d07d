"""Wire schemas.

CONTRACT
- Inputs: Pydantic models
- Outputs:
  - Validated JSON-serializable objects
- Invariants:
  - Defines the shape of the stdin payload, the stdout response and the
    persisted breaker record
  - Persisted records carry a schema_version int field
- Failure:
  - Raises ValidationError on schema mismatch
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class GatewayInput(BaseModel):
    # Provider-specific fields (sandbox, yolo, approval_mode, ...) pass through.
    model_config = ConfigDict(extra="allow")

    prompt: str | None = None
    model: str | None = None
    action: Literal["call", "status", "list-models"] = "call"
    # Prompt framing (see cligate.prompting); opt-in per request.
    context: str | None = None
    task_type: str | None = None
    include_rules: bool | None = None

    @property
    def wants_framing(self) -> bool:
        return any(v is not None for v in (self.context, self.task_type, self.include_rules))

    def payload(self) -> dict[str, Any]:
        return self.model_dump(exclude={"action", "context", "task_type", "include_rules"})


class GatewayResponse(BaseModel):
    provider: str
    success: bool
    output: str | None = None
    error_type: str | None = None
    message: str | None = None
    retryable: bool | None = None

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True, indent=2)


class BreakerRecord(BaseModel):
    schema_version: int = 1
    provider: str
    failure_timestamps: list[float] = Field(default_factory=list)
    last_success: float | None = None


class ProviderStatus(BaseModel):
    provider: str
    success: bool = True
    executable: str
    cli_installed: bool
    cli_path: str | None = None
    breaker_open: bool = False
    breaker_remaining_minutes: int = 0
    recent_failures: int = 0


class ModelList(BaseModel):
    provider: str
    success: bool = True
    models: dict[str, str] = Field(default_factory=dict)
    default: str | None = None


def validate_gateway_input(data: Any) -> tuple[bool, GatewayInput | None, str]:
    """Validate a decoded stdin payload.

    Returns: (is_valid, parsed_input, error_message)
    """
    if not isinstance(data, dict):
        return False, None, "Input must be a JSON object."
    try:
        return True, GatewayInput(**data), ""
    except (ValidationError, TypeError) as e:
        return False, None, str(e)
