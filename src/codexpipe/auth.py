"""Codex CLI authentication: status probing and login.

Two probe tiers:
  1. ``codex auth status --json`` (structured). Older CLIs don't have it.
  2. ``codex exec --json`` with a trivial prompt (heuristic), used only when
     tier 1 fails because the subcommand itself is unrecognized.

Probing never raises for an unsupported subcommand; failures come back as an
unauthenticated AuthStatus carrying the diagnostic text.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from codexpipe.errors import (
    BinaryNotFoundError,
    CliCommandError,
    CodexError,
    LoginFailedError,
    format_cli_error,
)
from codexpipe.logger import logger
from codexpipe.runner import merge_env
from codexpipe.types import AuthStatus

AUTH_STATUS_ARGS = ("auth", "status", "--json")
HEURISTIC_PROBE_ARGS = ("exec", "--json")
HEURISTIC_PROBE_INPUT = "ping"
LOGIN_ARGS = ("login",)

_UNSUPPORTED_COMMAND_MARKERS = (
    "unknown command",
    "unrecognized command",
    "unknown subcommand",
    "unrecognized subcommand",
    "invalid choice",
)
_AUTH_FLAG_KEYS = ("authenticated", "logged_in", "loggedIn")


@dataclass(frozen=True)
class CliResult:
    stdout: str
    stderr: str
    returncode: int


async def _run_cli(
    path: str,
    args: Sequence[str],
    *,
    env: Mapping[str, str],
    input: str | None = None,
    cwd: str | None = None,
) -> CliResult:
    """Run a short-lived Codex subcommand to completion.

    Raises CliCommandError on non-zero exit and BinaryNotFoundError if the
    binary is missing.
    """
    argv = [path, *args]
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=dict(env),
            cwd=cwd,
        )
    except FileNotFoundError as exc:
        raise BinaryNotFoundError(path, exc) from exc

    try:
        stdout, stderr = await proc.communicate(
            input.encode("utf-8") if input is not None else None
        )
    except BaseException:
        # Cancelled or failed mid-run: the child must not outlive the caller.
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        with contextlib.suppress(Exception):
            await proc.wait()
        logger.debug("Killed Codex CLI subcommand", argv=argv)
        raise

    result = CliResult(
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
        returncode=proc.returncode if proc.returncode is not None else -1,
    )
    if result.returncode != 0:
        raise CliCommandError(argv, result.returncode, result.stdout, result.stderr)
    return result


def parse_auth_status(output: str) -> tuple[bool | None, Any]:
    """Extract (authenticated, raw) from ``auth status --json`` output.

    ``authenticated`` is None when the output carries no recognizable signal.
    """
    trimmed = output.strip()
    if not trimmed:
        return None, None
    try:
        parsed = json.loads(trimmed)
    except json.JSONDecodeError as exc:
        logger.debug("Unparseable Codex CLI auth status output", error=str(exc))
        return None, None

    if not isinstance(parsed, dict):
        return None, parsed

    flag = next((parsed[k] for k in _AUTH_FLAG_KEYS if parsed.get(k) is not None), None)
    if isinstance(flag, bool):
        return flag, parsed

    status = parsed.get("status")
    if isinstance(status, str):
        normalized = status.lower()
        # "unauth" must be checked first, it contains "auth"
        if "unauth" in normalized or "signed-out" in normalized:
            return False, parsed
        if "auth" in normalized or "signed-in" in normalized:
            return True, parsed

    return None, parsed


def is_unsupported_auth_command(message: str) -> bool:
    normalized = message.lower()
    return any(marker in normalized for marker in _UNSUPPORTED_COMMAND_MARKERS)


async def get_auth_status(
    path: str | None = None,
    env: Mapping[str, str] | None = None,
    *,
    cwd: str | None = None,
) -> AuthStatus:
    """Determine whether the Codex CLI at *path* is authenticated."""
    codex_path = path or "codex"
    merged_env = merge_env(env)

    try:
        result = await _run_cli(codex_path, AUTH_STATUS_ARGS, env=merged_env, cwd=cwd)
    except (CodexError, OSError) as exc:
        error_output = format_cli_error(exc)
        if is_unsupported_auth_command(error_output):
            logger.info("Codex CLI has no auth status command, probing with exec", path=codex_path)
            return await _get_auth_status_from_exec(codex_path, merged_env, cwd=cwd)
        logger.warning("Codex CLI auth status check failed", path=codex_path, error=error_output)
        return AuthStatus(
            authenticated=False,
            source="structured-probe",
            detail=error_output or "Codex CLI auth status check failed.",
        )

    authenticated, raw = parse_auth_status(result.stdout)
    if authenticated is None:
        # The command succeeded; absence of a signal means logged in.
        authenticated = True
    return AuthStatus(authenticated=authenticated, source="structured-probe", raw=raw)


async def _get_auth_status_from_exec(
    path: str,
    env: Mapping[str, str],
    *,
    cwd: str | None = None,
) -> AuthStatus:
    try:
        await _run_cli(path, HEURISTIC_PROBE_ARGS, env=env, input=HEURISTIC_PROBE_INPUT, cwd=cwd)
    except (CodexError, OSError) as exc:
        return AuthStatus(
            authenticated=False,
            source="heuristic-probe",
            detail=format_cli_error(exc) or "Codex CLI auth check failed.",
        )
    return AuthStatus(authenticated=True, source="heuristic-probe")


async def ensure_login(
    path: str | None = None,
    env: Mapping[str, str] | None = None,
    *,
    cwd: str | None = None,
) -> None:
    """Run ``codex login`` unless the CLI already reports an active session.

    Raises LoginFailedError if the login subcommand exits non-zero.
    """
    codex_path = path or "codex"
    status = await get_auth_status(codex_path, env, cwd=cwd)
    if status.authenticated:
        logger.debug("Codex CLI already authenticated", source=status.source)
        return

    logger.info("Codex CLI not authenticated, running login", path=codex_path, detail=status.detail)
    try:
        await _run_cli(codex_path, LOGIN_ARGS, env=merge_env(env), cwd=cwd)
    except CliCommandError as exc:
        raise LoginFailedError(format_cli_error(exc)) from exc
