"""Process management: spawn, stdin delivery, stderr accumulation, exit tracking.

Provides:
  - ProcessHandle: owns one live ``codex exec`` process and its terminal state
  - start_process(): spawn the CLI and start the stdin/stderr/exit tasks
  - read_lines(): stdout as an async line sequence, reconciled with exit state
  - parse_event_line(): best-effort JSON parsing of one stdout line
  - run_exec(): spawn + read + parse, with unconditional cleanup

Three channels race to report on the process: stdout lines, stderr bytes and
the exit/failure notification. Only the ProcessHandle holds terminal state.
Once a runtime error is recorded no further stdout lines are surfaced, even if
they are already buffered in the pipe.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import enum
import json
from collections.abc import AsyncIterator
from typing import Any

from codexpipe.errors import (
    BinaryNotFoundError,
    CodexError,
    ProcessExitError,
    ProcessRuntimeError,
)
from codexpipe.logger import logger
from codexpipe.prompt import serialize_payload
from codexpipe.runner._args import build_exec_args, merge_env
from codexpipe.types import InvocationRequest

_CLOSE_TIMEOUT = 5.0


class ProcessPhase(enum.Enum):
    RUNNING = "running"
    ERROR_OBSERVED = "error_observed"
    EXITED = "exited"


class ProcessHandle:
    """Single authoritative holder of a process's terminal state."""

    def __init__(self, proc: asyncio.subprocess.Process, binary_path: str) -> None:
        self.proc = proc
        self.binary_path = binary_path
        self.phase = ProcessPhase.RUNNING
        self.error: CodexError | None = None
        self.exit_code: int | None = None
        self.stderr = ""
        self._stderr_truncated = False
        self._stdin_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._exit_task: asyncio.Task[None] | None = None

    # -- state transitions --------------------------------------------------

    def record_error(self, error: CodexError) -> None:
        """First error wins; it takes precedence over any later output."""
        if self.error is not None:
            return
        self.error = error
        self.phase = ProcessPhase.ERROR_OBSERVED
        logger.error("Codex CLI process error", pid=self.proc.pid, error=str(error))

    def record_exit(self, code: int) -> None:
        self.exit_code = code
        if self.phase is ProcessPhase.RUNNING:
            self.phase = ProcessPhase.EXITED

    def append_stderr(self, text: str, max_size: int) -> None:
        if self._stderr_truncated:
            return
        remaining = max_size - len(self.stderr)
        if len(text) > remaining:
            self.stderr += text[:remaining]
            self._stderr_truncated = True
            logger.warning("Codex CLI stderr truncated", pid=self.proc.pid, size=len(self.stderr))
        else:
            self.stderr += text

    def raise_if_failed(self) -> None:
        if self.error is not None:
            raise self.error

    # -- lifecycle ----------------------------------------------------------

    def _start_tasks(self, stdin_data: bytes, max_stderr_size: int) -> None:
        self._stdin_task = asyncio.create_task(_deliver_stdin(self, stdin_data))
        self._stderr_task = asyncio.create_task(_pump_stderr(self, max_stderr_size))
        self._exit_task = asyncio.create_task(_watch_exit(self))

    async def wait(self) -> int | None:
        """Wait for the exit watcher. Returns None if the process failed instead."""
        if self._exit_task is not None:
            await self._exit_task
        return self.exit_code

    async def stderr_text(self) -> str:
        """Full (possibly truncated) stderr once the pipe has closed."""
        if self._stderr_task is not None:
            await self._stderr_task
        return self.stderr

    async def close(self) -> None:
        """Kill the process if it is still running and stop the helper tasks."""
        if self.proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self.proc.kill()
            logger.debug("Killed Codex CLI process", pid=self.proc.pid)

        tasks = [t for t in (self._stdin_task, self._stderr_task, self._exit_task) if t]
        pending = [t for t in tasks if not t.done()]
        if pending:
            _, still_pending = await asyncio.wait(pending, timeout=_CLOSE_TIMEOUT)
            for task in still_pending:
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


# ---------------------------------------------------------------------------
# Helper tasks
# ---------------------------------------------------------------------------


def _kill(proc: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        proc.kill()


async def _deliver_stdin(handle: ProcessHandle, data: bytes) -> None:
    """Write the prompt once and close stdin. Any failure kills the process."""
    stdin = handle.proc.stdin
    if stdin is None:
        logger.error("Codex CLI stdin unavailable", pid=handle.proc.pid)
        _kill(handle.proc)
        return
    try:
        stdin.write(data)
        await stdin.drain()
        stdin.close()
        await stdin.wait_closed()
    except OSError as exc:
        logger.error("Error writing to Codex CLI stdin", pid=handle.proc.pid, error=str(exc))
        _kill(handle.proc)


async def _pump_stderr(handle: ProcessHandle, max_size: int) -> None:
    stream = handle.proc.stderr
    if stream is None:
        return
    # Multi-byte characters may straddle read boundaries.
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    try:
        while True:
            chunk = await stream.read(8192)
            text = decoder.decode(chunk, final=not chunk)
            for line in text.strip().splitlines():
                if line:
                    logger.debug(line, source="codex-stderr")
            if text:
                handle.append_stderr(text, max_size)
            if not chunk:
                break
    except OSError as exc:
        handle.record_error(ProcessRuntimeError(f"Failed reading Codex CLI stderr: {exc}"))


async def _watch_exit(handle: ProcessHandle) -> None:
    """Observe the exit code exactly once."""
    try:
        code = await handle.proc.wait()
    except OSError as exc:
        handle.record_error(ProcessRuntimeError(f"Codex CLI process failed: {exc}"))
        return
    handle.record_exit(code)
    logger.debug("Codex CLI exited", pid=handle.proc.pid, code=code)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def start_process(request: InvocationRequest) -> ProcessHandle:
    """Spawn ``codex exec`` for *request* and start feeding its stdin.

    Raises BinaryNotFoundError immediately if the binary cannot be located.
    """
    args = build_exec_args(request)
    try:
        proc = await asyncio.create_subprocess_exec(
            request.binary_path,
            *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=merge_env(request.extra_env),
            cwd=request.cwd,
            limit=request.max_line_bytes,
        )
    except FileNotFoundError as exc:
        raise BinaryNotFoundError(request.binary_path, exc) from exc

    logger.info("Spawned Codex CLI", path=request.binary_path, args=args, pid=proc.pid)
    handle = ProcessHandle(proc, request.binary_path)
    stdin_data = serialize_payload(request.payload, request.prompt_format).encode("utf-8")
    handle._start_tasks(stdin_data, request.max_stderr_size)
    return handle


async def read_lines(handle: ProcessHandle) -> AsyncIterator[str]:
    """Yield stdout lines until the pipe closes, then reconcile the exit state.

    Precedence: a recorded runtime error, then a non-zero exit code.
    """
    stdout = handle.proc.stdout
    assert stdout is not None

    while True:
        handle.raise_if_failed()
        try:
            raw = await stdout.readline()
        except (ValueError, OSError) as exc:
            # ValueError: line exceeded the reader limit
            handle.record_error(ProcessRuntimeError(f"Failed reading Codex CLI output: {exc}"))
            break
        if not raw:
            break
        handle.raise_if_failed()
        yield raw.decode("utf-8", errors="replace").rstrip("\r\n")

    handle.raise_if_failed()
    exit_code = await handle.wait()
    handle.raise_if_failed()
    if exit_code:
        raise ProcessExitError(exit_code, await handle.stderr_text())


def parse_event_line(line: str) -> Any | None:
    """Parse one stdout line as JSON. Blank or malformed lines return None."""
    trimmed = line.strip()
    if not trimmed:
        return None
    try:
        return json.loads(trimmed)
    except json.JSONDecodeError as exc:
        logger.debug("Skipping non-JSON Codex CLI line", length=len(trimmed), error=str(exc))
        return None


async def run_exec(request: InvocationRequest) -> AsyncIterator[Any]:
    """Run one invocation and yield each parsed JSON event.

    The process is killed on every exit path: completion, error, or the
    consumer closing this generator early.
    """
    handle = await start_process(request)
    lines = read_lines(handle)
    try:
        async for line in lines:
            event = parse_event_line(line)
            if event is None:
                continue
            yield event
    finally:
        await lines.aclose()
        await handle.close()
