import asyncio
import json
import sys
from unittest.mock import AsyncMock, patch

import pytest

from cligate.gateway import (
    EXIT_INVALID_REQUEST,
    EXIT_OK,
    EXIT_PROVIDER_FAILURE,
    Gateway,
    UnknownProviderError,
    handle_payload,
)
from cligate.providers.base import ErrorKind, Failure, ProviderDescriptor, ProviderRequest, Success
from cligate.providers.registry import KIMI
from cligate.util.events import EventLog

from conftest import python_provider

ECHO = "import sys; print('  ' + sys.argv[1] + '  \\n')"


def _fail(stderr: str, rc: int = 1) -> str:
    return f"import sys; sys.stderr.write({stderr!r}); sys.exit({rc})"


def _gateway(store, *descriptors, **kw) -> Gateway:
    return Gateway(breaker=store, providers={d.name: d for d in descriptors}, **kw)


def _handle(gw, provider, prompt="hello", **kw):
    return asyncio.run(gw.handle(provider, ProviderRequest(prompt=prompt, **kw)))


def test_success_returns_trimmed_stdout(store, backend):
    gw = _gateway(store, python_provider(ECHO))
    res = _handle(gw, "fake", prompt="a  b\tc")
    assert isinstance(res, Success)
    assert res.output == "a  b\tc"
    assert backend.load("fake").last_success is not None


def test_success_clears_previous_failures(store, backend):
    store.record_failure("fake")
    store.record_failure("fake")
    gw = _gateway(store, python_provider(ECHO))
    assert _handle(gw, "fake").ok
    assert backend.load("fake").failure_timestamps == []


def test_open_breaker_short_circuits(store):
    for _ in range(3):
        store.record_failure("fake")
    gw = _gateway(store, python_provider(ECHO))
    with patch("cligate.gateway.invoke", new=AsyncMock()) as mock_invoke:
        res = _handle(gw, "fake")
    mock_invoke.assert_not_called()
    assert isinstance(res, Failure)
    assert res.kind is ErrorKind.CIRCUIT_OPEN
    assert res.retryable is False
    assert "10 minutes" in res.message


def test_blank_prompt_is_local_failure(store, backend):
    gw = _gateway(store, python_provider(ECHO))
    with patch("cligate.gateway.invoke", new=AsyncMock()) as mock_invoke:
        res = _handle(gw, "fake", prompt="   ")
    mock_invoke.assert_not_called()
    assert res.invalid_input is True
    assert res.error_type == "invalid_request"
    assert backend.states == {}


def test_missing_executable(store, backend):
    d = ProviderDescriptor(name="ghost", executable="cligate-no-such-cli", install_hint="pip install ghost")
    gw = _gateway(store, d)
    res = _handle(gw, "ghost")
    assert res.kind is ErrorKind.MISSING
    assert res.to_response("ghost").error_type == "missing"
    assert "pip install ghost" in res.message
    assert backend.load("ghost").failure_timestamps == []


def test_auth_failure_does_not_count(store, backend):
    d = python_provider(_fail("Error: not logged in"), login_hint="fake login")
    gw = _gateway(store, d)
    for _ in range(5):
        res = _handle(gw, "fake")
        assert res.kind is ErrorKind.AUTH
    assert "fake login" in res.message
    assert backend.load("fake").failure_timestamps == []
    assert store.is_open("fake").open is False


def test_server_errors_trip_breaker(store):
    gw = _gateway(store, python_provider(_fail("HTTP 503 Service Unavailable")))
    for _ in range(3):
        res = _handle(gw, "fake")
        assert res.kind is ErrorKind.SERVER_ERROR
        assert res.retryable is False
    res = _handle(gw, "fake")
    assert res.kind is ErrorKind.CIRCUIT_OPEN


def test_rate_limit_not_retryable(store, backend):
    gw = _gateway(store, python_provider(_fail("Rate limit exceeded, try later")))
    res = _handle(gw, "fake")
    assert res.kind is ErrorKind.RATE_LIMIT
    assert res.retryable is False
    assert len(backend.load("fake").failure_timestamps) == 1


def test_unknown_keeps_raw_stderr(store, backend):
    gw = _gateway(store, python_provider(_fail("weird\n  failure  detail", rc=7)))
    res = _handle(gw, "fake")
    assert res.kind is ErrorKind.UNKNOWN
    assert "weird\n  failure  detail" in res.message
    assert "rc=7" in res.message
    assert len(backend.load("fake").failure_timestamps) == 1


def test_provider_specific_auth_cue(store):
    d = python_provider(_fail("DashScope rejected the request"), auth_cues=("dashscope",))
    gw = _gateway(store, d)
    assert _handle(gw, "fake").kind is ErrorKind.AUTH


def test_overflow_is_unknown(store, backend):
    gw = _gateway(store, python_provider("import sys; sys.stdout.write('x' * 10000)"), max_output_bytes=100)
    res = _handle(gw, "fake")
    assert res.kind is ErrorKind.UNKNOWN
    assert "exceeded 100 bytes" in res.message
    assert len(backend.load("fake").failure_timestamps) == 1


@pytest.mark.timeout(15)
def test_timeout_counts_toward_breaker(store, backend):
    gw = _gateway(store, python_provider("import time; time.sleep(10)", timeout_s=1))
    res = _handle(gw, "fake")
    assert res.kind is ErrorKind.TIMEOUT
    assert "timed out after 1s" in res.message
    assert len(backend.load("fake").failure_timestamps) == 1


def test_output_filter_applied(store):
    script = "print(\"TextPart(type='text', text='filtered answer')\")"
    gw = _gateway(store, python_provider(script, output_filter="text_parts"))
    assert _handle(gw, "fake").output == "filtered answer"


def test_unknown_provider_raises(store):
    gw = _gateway(store, python_provider(ECHO))
    with pytest.raises(UnknownProviderError):
        _handle(gw, "nope")


def test_events_are_recorded(store, tmp_path):
    log = EventLog(tmp_path / "events.jsonl")
    gw = _gateway(store, python_provider(ECHO), python_provider(_fail("quota"), name="bad"), events=log)
    _handle(gw, "fake")
    _handle(gw, "bad")
    events = log.read()
    assert [e["outcome"] for e in events] == ["success", "failure"]
    assert events[1]["error_type"] == "limit"
    assert all("hello" not in json.dumps(e) for e in events)


def test_concurrent_calls(store):
    gw = _gateway(store, python_provider(ECHO))

    async def many():
        return await asyncio.gather(*(gw.handle("fake", ProviderRequest(prompt=f"p{i}")) for i in range(5)))

    results = asyncio.run(many())
    assert [r.output for r in results] == [f"p{i}" for i in range(5)]


def test_handle_payload_exit_codes(store):
    gw = _gateway(store, python_provider(ECHO), python_provider(_fail("unauthorized"), name="bad"))

    out, code = asyncio.run(handle_payload(gw, "fake", {"prompt": "hi"}))
    assert code == EXIT_OK
    assert json.loads(out) == {"provider": "fake", "success": True, "output": "hi"}

    out, code = asyncio.run(handle_payload(gw, "bad", {"prompt": "hi"}))
    assert code == EXIT_PROVIDER_FAILURE
    assert json.loads(out)["error_type"] == "auth"

    out, code = asyncio.run(handle_payload(gw, "fake", {"model": "x"}))
    assert code == EXIT_INVALID_REQUEST
    assert json.loads(out)["error_type"] == "invalid_request"

    out, code = asyncio.run(handle_payload(gw, "fake", ["not", "an", "object"]))
    assert code == EXIT_INVALID_REQUEST


def test_handle_payload_status_and_models(store):
    d = python_provider(ECHO, models={"m1": "Model one"}, default_model="m1")
    gw = _gateway(store, d)

    out, code = asyncio.run(handle_payload(gw, "fake", {"action": "status"}))
    data = json.loads(out)
    assert code == EXIT_OK
    assert data["cli_installed"] is True
    assert data["cli_path"]
    assert data["breaker_open"] is False

    out, _ = asyncio.run(handle_payload(gw, "fake", {"action": "list-models"}))
    assert json.loads(out) == {"provider": "fake", "success": True, "models": {"m1": "Model one"}, "default": "m1"}


def test_stdout_diagnostics_classify_kimi_errors(store, backend):
    script = "import sys; print('LLM not set, run /setup'); sys.exit(1)"
    d = python_provider(script, auth_cues=KIMI.auth_cues, rate_limit_cues=KIMI.rate_limit_cues, diagnose_stdout=True)
    gw = _gateway(store, d)
    res = _handle(gw, "fake")
    assert res.kind is ErrorKind.AUTH
    assert backend.load("fake").failure_timestamps == []

    d = python_provider("import sys; print('HTTP 429'); sys.exit(1)", name="limited",
                        rate_limit_cues=KIMI.rate_limit_cues, diagnose_stdout=True)
    gw = _gateway(store, d)
    assert _handle(gw, "limited").kind is ErrorKind.RATE_LIMIT


def test_stdout_ignored_without_flag(store, backend):
    script = "import sys; print('LLM not set, run /setup'); sys.exit(1)"
    gw = _gateway(store, python_provider(script, auth_cues=KIMI.auth_cues))
    res = _handle(gw, "fake")
    assert res.kind is ErrorKind.UNKNOWN
    assert len(backend.load("fake").failure_timestamps) == 1


def test_unknown_message_falls_back_to_stdout(store):
    script = "import sys; print('kimi exploded'); sys.exit(2)"
    gw = _gateway(store, python_provider(script, diagnose_stdout=True))
    assert "kimi exploded" in _handle(gw, "fake").message


def test_handle_payload_frames_prompt(store, tmp_path):
    rules = tmp_path / "CORE_RULES.md"
    rules.write_text("Always write tests.")
    gw = _gateway(store, python_provider(ECHO), rules_path=rules)

    out, code = asyncio.run(
        handle_payload(gw, "fake", {"prompt": "Implement a parser", "context": "Python 3.12"})
    )
    assert code == EXIT_OK
    output = json.loads(out)["output"]
    assert output.startswith("# Context and Rules\nAlways write tests.")
    assert "# Additional Context\nPython 3.12" in output
    assert output.endswith("# Task\nImplement a parser")

    out, _ = asyncio.run(handle_payload(gw, "fake", {"prompt": "Implement a parser", "include_rules": False}))
    assert json.loads(out)["output"] == "# Task\nImplement a parser"


def test_handle_payload_without_framing_fields_is_verbatim(store, tmp_path):
    rules = tmp_path / "CORE_RULES.md"
    rules.write_text("Always write tests.")
    gw = _gateway(store, python_provider(ECHO), rules_path=rules)
    out, _ = asyncio.run(handle_payload(gw, "fake", {"prompt": "Implement a parser"}))
    assert json.loads(out)["output"] == "Implement a parser"


def test_missing_rules_file_frames_without_rules(store, tmp_path):
    gw = _gateway(store, python_provider(ECHO), rules_path=tmp_path / "absent.md")
    out, _ = asyncio.run(handle_payload(gw, "fake", {"prompt": "Fix the bug", "task_type": "debugging"}))
    assert json.loads(out)["output"] == "# Task\nFix the bug"
