"""cligate package.

Simple API for scripts and orchestrator agents:

    import cligate

    # Ask a provider CLI; never raises for provider failures
    result = cligate.ask("codex", "Explain quicksort", model="gpt-5-codex")
    if result["success"]:
        print(result["output"])
    else:
        print(result["error_type"], result["message"])
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

from .breaker import BreakerStore, FileBackend, MemoryBackend
from .classifier import classify
from .config import GatewayConfig, load_config
from .gateway import Gateway, handle_payload
from .providers.base import ErrorKind, Failure, ProviderRequest, Success

__version__ = "0.1.0"


def ask(
    provider: str,
    prompt: str,
    *,
    model: Optional[str] = None,
    config: Optional[str | Path] = None,
    **options: Any,
) -> dict:
    """Run one provider call. Returns the same dict the CLI prints.

    Args:
        provider: Provider id (codex, gemini, qwen, kimi, claude, copilot, or
            one added in the config file)
        prompt: Prompt text forwarded verbatim as one argument
        model: Optional model name
        config: Optional path to a config YAML file
        **options: Provider-specific fields (sandbox, yolo, approval_mode, ...)

    Returns:
        dict with keys: provider, success, and either output or
        error_type/message/retryable
    """
    cfg = load_config(Path(config) if config else None)
    gateway = Gateway.from_config(cfg)
    payload: dict[str, Any] = {"prompt": prompt, **options}
    if model is not None:
        payload["model"] = model
    out, _code = asyncio.run(handle_payload(gateway, provider, payload))
    return json.loads(out)


__all__ = [
    "ask",
    "classify",
    "load_config",
    "BreakerStore",
    "ErrorKind",
    "Failure",
    "FileBackend",
    "Gateway",
    "GatewayConfig",
    "MemoryBackend",
    "ProviderRequest",
    "Success",
]
