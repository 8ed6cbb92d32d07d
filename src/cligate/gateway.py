"""Provider gateway.

CONTRACT
- Inputs: Provider id, ProviderRequest
- Outputs (required):
  - ProviderResult (Success with trimmed stdout, or classified Failure)
- Invariants:
  - An open breaker short-circuits before the provider is contacted
  - Invalid input never touches the breaker
  - Breaker accounting follows KIND_POLICY (AUTH/MISSING never count)
  - At most one subprocess per handle() call, no automatic retries
- Failure:
  - Raises UnknownProviderError for an id with no descriptor
  - Provider failures are returned as Failure values, never raised
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from loguru import logger

from .artifacts.schemas import GatewayResponse, ModelList, ProviderStatus, validate_gateway_input
from .breaker import BreakerStore, FileBackend
from .classifier import build_rules, classify, diagnostic_text
from .config import GatewayConfig
from .invoker import DEFAULT_MAX_OUTPUT_BYTES, InvokeOutcome, invoke
from .prompting import load_rules, smart_build_prompt
from .providers.base import (
    INVALID_REQUEST,
    ErrorKind,
    Failure,
    ProviderDescriptor,
    ProviderRequest,
    ProviderResult,
    Success,
)
from .providers.common import apply_output_filter, build_argv, describe_argv
from .util.events import EventLog
from .util.redaction import redact
from .util.shell import which

EXIT_OK = 0
EXIT_PROVIDER_FAILURE = 1
EXIT_INVALID_REQUEST = 2


class UnknownProviderError(KeyError):
    pass


@dataclass(frozen=True)
class KindPolicy:
    counts_toward_breaker: bool
    retryable: bool


KIND_POLICY: dict[ErrorKind, KindPolicy] = {
    ErrorKind.AUTH: KindPolicy(counts_toward_breaker=False, retryable=False),
    ErrorKind.MISSING: KindPolicy(counts_toward_breaker=False, retryable=False),
    ErrorKind.RATE_LIMIT: KindPolicy(counts_toward_breaker=True, retryable=False),
    ErrorKind.SERVER_ERROR: KindPolicy(counts_toward_breaker=True, retryable=False),
    ErrorKind.TIMEOUT: KindPolicy(counts_toward_breaker=True, retryable=False),
    ErrorKind.UNKNOWN: KindPolicy(counts_toward_breaker=True, retryable=False),
    ErrorKind.CIRCUIT_OPEN: KindPolicy(counts_toward_breaker=False, retryable=False),
}


def failure_message(kind: ErrorKind, d: ProviderDescriptor, outcome: InvokeOutcome, max_output_bytes: int) -> str:
    """User-facing message with the remedy for each failure kind."""
    if kind is ErrorKind.MISSING:
        msg = f"The `{d.executable}` CLI is not available on PATH. Install it and ensure it is on the search path."
        if d.install_hint:
            msg += f" Install with: {d.install_hint}"
        return msg
    if kind is ErrorKind.AUTH:
        msg = f"{d.name} CLI authentication missing or invalid."
        if d.login_hint:
            msg += f" Run `{d.login_hint}` in your shell."
        return msg
    if kind is ErrorKind.RATE_LIMIT:
        return f"{d.name} rate limit or quota reached. DO NOT RETRY automatically. Wait before manual retry."
    if kind is ErrorKind.SERVER_ERROR:
        return (
            f"{d.name} API server error detected. DO NOT RETRY - likely service outage. "
            "Circuit breaker will activate after multiple failures."
        )
    if kind is ErrorKind.TIMEOUT:
        return f"Request timed out after {d.timeout_s:g}s. DO NOT RETRY automatically."
    if outcome.overflow:
        return f"{d.name} CLI {outcome.overflow} exceeded {max_output_bytes} bytes; output discarded."
    # Raw diagnostic text is kept verbatim for the operator.
    detail = outcome.stderr.strip()
    if not detail and d.diagnose_stdout:
        detail = outcome.stdout.strip()
    if outcome.start_failure and outcome.start_failure.message:
        detail = outcome.start_failure.message
    return f"{d.name} CLI error (rc={outcome.returncode}). DO NOT RETRY. Stderr:\n{detail}"


def circuit_open_message(remaining_minutes: int) -> str:
    return (
        "Circuit breaker is open due to repeated failures. "
        f"Please wait {remaining_minutes} minutes before retrying."
    )


@dataclass
class Gateway:
    breaker: BreakerStore
    providers: Mapping[str, ProviderDescriptor]
    events: EventLog | None = None
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    cwd: Path | None = None
    rules_path: Path | None = None
    _rules: str | None = field(default=None, init=False, repr=False)

    @classmethod
    def from_config(cls, cfg: GatewayConfig) -> Gateway:
        store = BreakerStore(
            FileBackend(cfg.state_dir),
            threshold=cfg.breaker.threshold,
            window_s=cfg.breaker.window_s,
            cooldown_s=cfg.breaker.cooldown_s,
        )
        return cls(
            breaker=store,
            providers=cfg.providers,
            events=EventLog(cfg.events_path) if cfg.events_path else None,
            max_output_bytes=cfg.max_output_bytes,
            rules_path=cfg.rules_path,
        )

    def rules(self) -> str:
        """Rules text for prompt framing, read once per gateway."""
        if self._rules is None:
            self._rules = load_rules(self.rules_path) if self.rules_path else ""
        return self._rules

    def descriptor(self, provider_id: str) -> ProviderDescriptor:
        try:
            return self.providers[provider_id]
        except KeyError:
            raise UnknownProviderError(provider_id) from None

    async def handle(self, provider_id: str, request: ProviderRequest) -> ProviderResult:
        d = self.descriptor(provider_id)
        start_t = time.monotonic()

        status = self.breaker.is_open(provider_id)
        if status.open:
            result: ProviderResult = Failure(
                ErrorKind.CIRCUIT_OPEN,
                circuit_open_message(status.remaining_minutes),
                retryable=False,
            )
            logger.warning(f"{provider_id}: circuit open, {status.remaining_minutes} min remaining")
            self._record_event(provider_id, result, start_t)
            return result

        if not request.is_valid:
            result = Failure(
                ErrorKind.UNKNOWN,
                "Missing required field `prompt` (string).",
                retryable=False,
                invalid_input=True,
            )
            self._record_event(provider_id, result, start_t)
            return result

        args = build_argv(d, request)
        logger.debug(f"{provider_id}: {describe_argv(d.executable, args, request.prompt)}")
        outcome = await invoke(
            d.executable,
            args,
            d.timeout_s,
            max_output_bytes=self.max_output_bytes,
            cwd=self.cwd,
        )

        if outcome.failed:
            result = self._failure(provider_id, d, outcome)
        else:
            self.breaker.record_success(provider_id)
            result = Success(output=apply_output_filter(d.output_filter, outcome.stdout).strip())
            logger.info(f"{provider_id}: success in {time.monotonic() - start_t:.1f}s")

        self._record_event(provider_id, result, start_t)
        return result

    def _failure(self, provider_id: str, d: ProviderDescriptor, outcome: InvokeOutcome) -> Failure:
        if outcome.start_failure is not None and outcome.start_failure.not_found:
            kind = ErrorKind.MISSING
        elif outcome.overflow:
            kind = ErrorKind.UNKNOWN
        else:
            rules = build_rules(auth_cues=d.auth_cues, rate_limit_cues=d.rate_limit_cues)
            kind = classify(diagnostic_text(outcome, include_stdout=d.diagnose_stdout), rules)

        policy = KIND_POLICY[kind]
        if policy.counts_toward_breaker:
            self.breaker.record_failure(provider_id)

        logger.warning(
            f"{provider_id}: {kind.wire_name} (rc={outcome.returncode}) {redact(outcome.stderr.strip())[:500]}"
        )
        return Failure(kind, failure_message(kind, d, outcome, self.max_output_bytes), retryable=policy.retryable)

    def _record_event(self, provider_id: str, result: ProviderResult, start_t: float) -> None:
        if self.events is None:
            return
        elapsed = time.monotonic() - start_t
        if isinstance(result, Success):
            self.events.record_call(provider_id, outcome="success", elapsed_s=elapsed)
        else:
            self.events.record_call(
                provider_id,
                outcome="failure",
                elapsed_s=elapsed,
                error_type=result.error_type,
                message=result.message,
            )

    def status(self, provider_id: str) -> ProviderStatus:
        d = self.descriptor(provider_id)
        path = which(d.executable)
        b = self.breaker.is_open(provider_id)
        return ProviderStatus(
            provider=provider_id,
            executable=d.executable,
            cli_installed=path is not None,
            cli_path=path,
            breaker_open=b.open,
            breaker_remaining_minutes=b.remaining_minutes,
            recent_failures=b.recent_failures,
        )

    def list_models(self, provider_id: str) -> ModelList:
        d = self.descriptor(provider_id)
        return ModelList(provider=provider_id, models=dict(d.models), default=d.default_model)


def invalid_request(provider_id: str, message: str) -> GatewayResponse:
    return GatewayResponse(
        provider=provider_id,
        success=False,
        error_type=INVALID_REQUEST,
        message=message,
        retryable=False,
    )


async def handle_payload(gateway: Gateway, provider_id: str, data: object) -> tuple[str, int]:
    """Run one decoded stdin payload end to end.

    Returns: (response_json, exit_code)
    """
    ok, parsed, err = validate_gateway_input(data)
    if not ok or parsed is None:
        return invalid_request(provider_id, err).to_json(), EXIT_INVALID_REQUEST

    if parsed.action == "status":
        return gateway.status(provider_id).model_dump_json(indent=2), EXIT_OK
    if parsed.action == "list-models":
        return gateway.list_models(provider_id).model_dump_json(indent=2), EXIT_OK

    payload = parsed.payload()
    if parsed.wants_framing and parsed.prompt and parsed.prompt.strip():
        payload["prompt"] = smart_build_prompt(
            parsed.prompt,
            rules=gateway.rules(),
            context=parsed.context,
            task_type=parsed.task_type,
            include_rules=parsed.include_rules is not False,
        )
    request = gateway.descriptor(provider_id).request_from_payload(payload)
    result = await gateway.handle(provider_id, request)
    if result.ok:
        code = EXIT_OK
    elif isinstance(result, Failure) and result.invalid_input:
        code = EXIT_INVALID_REQUEST
    else:
        code = EXIT_PROVIDER_FAILURE
    return result.to_response(provider_id).to_json(), code
