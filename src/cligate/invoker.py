"""Provider invoker.

CONTRACT
- Inputs: Executable name, argv list, timeout, output byte limit
- Outputs (required):
  - InvokeOutcome(exited_cleanly, returncode, stdout, stderr, start_failure,
    timed_out, overflow)
- Invariants:
  - Spawns exactly one child per call, without a shell; stdin is /dev/null
  - stdout/stderr are drained concurrently into bounded buffers
  - On timeout, overflow or cancellation the child's whole process group is
    killed, even when the child itself already exited, and the pipes are
    read to EOF and the child reaped before returning
  - No retries
- Failure:
  - Never raises for provider problems; start failures, timeouts and buffer
    overflows are reported in the outcome
  - Cancellation of the caller propagates after the child is reaped
"""

from __future__ import annotations

import asyncio
import os
import signal
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

DEFAULT_MAX_OUTPUT_BYTES = 1024 * 1024
_CHUNK_SIZE = 64 * 1024
_POSIX = os.name == "posix"
_CLOSE_GRACE_S = 2.0


@dataclass(frozen=True)
class StartFailure:
    not_found: bool
    message: str = ""


@dataclass(frozen=True)
class InvokeOutcome:
    exited_cleanly: bool
    stdout: str = ""
    stderr: str = ""
    returncode: int | None = None
    start_failure: StartFailure | None = None
    timed_out: bool = False
    overflow: str | None = None  # name of the stream that exceeded the limit

    @property
    def failed(self) -> bool:
        return not self.exited_cleanly


class OutputOverflow(Exception):
    def __init__(self, stream: str, limit: int):
        super().__init__(f"{stream} exceeded {limit} bytes")
        self.stream = stream
        self.limit = limit


async def _drain(reader: asyncio.StreamReader, limit: int, name: str) -> bytes:
    buf = bytearray()
    while True:
        chunk = await reader.read(_CHUNK_SIZE)
        if not chunk:
            return bytes(buf)
        buf.extend(chunk)
        if len(buf) > limit:
            raise OutputOverflow(name, limit)


async def _communicate(proc: asyncio.subprocess.Process, limit: int) -> tuple[bytes, bytes]:
    assert proc.stdout is not None and proc.stderr is not None
    out_task = asyncio.ensure_future(_drain(proc.stdout, limit, "stdout"))
    err_task = asyncio.ensure_future(_drain(proc.stderr, limit, "stderr"))
    try:
        stdout_b, stderr_b = await asyncio.gather(out_task, err_task)
    finally:
        # A StreamReader allows one waiter, so leftover reads must finish
        # cancelling before the pipes are drained again on termination.
        pending = [t for t in (out_task, err_task) if not t.done()]
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
    await proc.wait()
    return stdout_b, stderr_b


async def _discard(reader: asyncio.StreamReader | None) -> None:
    if reader is None:
        return
    while await reader.read(_CHUNK_SIZE):
        pass


async def _close_pipes_and_wait(proc: asyncio.subprocess.Process) -> None:
    await asyncio.gather(_discard(proc.stdout), _discard(proc.stderr))
    await proc.wait()
    # Let the pipe transports run connection_lost before the caller returns.
    await asyncio.sleep(0)


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    # The child leads its own process group. The group outlives a reaped
    # leader while helpers it spawned still run, so kill it unconditionally.
    if _POSIX:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
    elif proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    try:
        await asyncio.wait_for(_close_pipes_and_wait(proc), timeout=_CLOSE_GRACE_S)
    except asyncio.TimeoutError:
        # Only a helper that left the process group can still hold the pipes.
        logger.warning(f"pid {proc.pid}: output pipes still open {_CLOSE_GRACE_S}s after kill")


def _decode(b: bytes) -> str:
    return b.decode("utf-8", errors="replace")


async def invoke(
    executable: str,
    args: list[str],
    timeout_s: float,
    *,
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
) -> InvokeOutcome:
    try:
        proc = await asyncio.create_subprocess_exec(
            executable,
            *args,
            cwd=str(cwd) if cwd else None,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=(os.environ | env) if env else None,
            start_new_session=_POSIX,
        )
    except FileNotFoundError as e:
        return InvokeOutcome(exited_cleanly=False, start_failure=StartFailure(not_found=True, message=str(e)))
    except OSError as e:
        return InvokeOutcome(exited_cleanly=False, start_failure=StartFailure(not_found=False, message=str(e)))

    try:
        stdout_b, stderr_b = await asyncio.wait_for(_communicate(proc, max_output_bytes), timeout=timeout_s)
    except asyncio.TimeoutError:
        logger.warning(f"{executable} timed out after {timeout_s}s; killing pid {proc.pid}")
        await _terminate(proc)
        return InvokeOutcome(exited_cleanly=False, returncode=proc.returncode, timed_out=True)
    except OutputOverflow as e:
        logger.warning(f"{executable} output overflow: {e}")
        await _terminate(proc)
        return InvokeOutcome(exited_cleanly=False, returncode=proc.returncode, overflow=e.stream)
    except BaseException:
        # Cancellation and unexpected errors take the process group down too.
        await _terminate(proc)
        raise

    rc = proc.returncode
    return InvokeOutcome(
        exited_cleanly=rc == 0,
        stdout=_decode(stdout_b),
        stderr=_decode(stderr_b),
        returncode=rc,
    )


if __name__ == "__main__":
    import argparse
    import json
    import sys

    parser = argparse.ArgumentParser(description="Invoke an executable with bounded capture")
    parser.add_argument("executable", help="Executable name")
    parser.add_argument("args", nargs="*", help="Arguments")
    parser.add_argument("--timeout", type=float, default=10, help="Timeout in seconds")
    args = parser.parse_args()

    res = asyncio.run(invoke(args.executable, args.args, args.timeout))
    print(
        json.dumps(
            {
                "exited_cleanly": res.exited_cleanly,
                "returncode": res.returncode,
                "timed_out": res.timed_out,
                "overflow": res.overflow,
                "not_found": bool(res.start_failure and res.start_failure.not_found),
                "stdout": res.stdout,
                "stderr": res.stderr,
            },
            indent=2,
            ensure_ascii=False,
        )
    )
    sys.exit(0 if res.exited_cleanly else 1)
