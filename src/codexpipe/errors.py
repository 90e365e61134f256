"""Error taxonomy for Codex CLI invocations.

Every error raised out of this package derives from :class:`CodexError`.
All of them are fatal to the streaming session that raised them; nothing
here is retried internally.
"""

from __future__ import annotations

from typing import Any

CODEX_CLI_INSTALLATION_URL = "https://github.com/openai/codex"


class CodexError(Exception):
    """Base class for Codex CLI adapter errors."""


class BinaryNotFoundError(CodexError):
    """The configured Codex binary could not be located at spawn time."""

    def __init__(self, path: str, original: BaseException | str) -> None:
        self.path = path
        self.original = original
        super().__init__(
            f"Codex CLI not found at '{path}'. Install it from {CODEX_CLI_INSTALLATION_URL}. "
            f"Original error: {original}"
        )


class ProcessRuntimeError(CodexError):
    """The process failed after it was spawned (pipe failure, vanished binary, ...)."""


class ProcessExitError(CodexError):
    """The process exited non-zero without a prior runtime error."""

    def __init__(self, exit_code: int, stderr: str = "") -> None:
        self.exit_code = exit_code
        self.stderr = stderr.strip()
        msg = f"Codex CLI process exited with code {exit_code}."
        if self.stderr:
            msg += f" Error output: {self.stderr}"
        super().__init__(msg)


class ProtocolEventError(CodexError):
    """A streamed event explicitly signalled failure."""

    def __init__(self, message: str, event: Any = None) -> None:
        self.event = event
        super().__init__(message)


class LoginFailedError(CodexError):
    """The interactive ``login`` subcommand failed."""

    def __init__(self, output: str = "") -> None:
        self.output = output
        msg = "Codex CLI login failed."
        if output:
            msg += f" Error output: {output}"
        super().__init__(msg)


class MalformedMessageError(CodexError):
    """A chat message carried a content block of an unrecognized kind."""


class CliCommandError(CodexError):
    """A short-lived Codex subcommand (auth status, probe, login) exited non-zero."""

    def __init__(self, argv: list[str], returncode: int, stdout: str, stderr: str) -> None:
        self.argv = argv
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(
            f"{' '.join(argv)} failed (exit {returncode}): {stderr.strip() or stdout.strip()}"
        )


def format_cli_error(error: BaseException | str | None) -> str:
    """Best diagnostic text for *error*: captured stderr, captured stdout, then the message."""
    if error is None:
        return ""
    if isinstance(error, str):
        return error.strip()
    for attr in ("stderr", "stdout"):
        captured = getattr(error, attr, None)
        if isinstance(captured, str) and captured.strip():
            return captured.strip()
    return str(error).strip()
