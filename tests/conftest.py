"""Shared test fixtures for codexpipe."""

from __future__ import annotations

import asyncio

import pytest

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, not fixtures: importable by test files)
# ---------------------------------------------------------------------------


def make_settings(**overrides):
    """Create a Settings object with sensible defaults for testing.

    Usage::

        s = make_settings(codex=CodexConfig(auth_mode="api-key"))
        s = make_settings(secrets=SecretsConfig(codex_api_key=SecretStr("sk-test")))
    """
    from codexpipe.config import CodexConfig, LoggingConfig, SecretsConfig, Settings

    defaults = {
        "codex": CodexConfig(),
        "logging": LoggingConfig(),
        "secrets": SecretsConfig(),
    }
    defaults.update(overrides)
    return Settings.model_construct(**defaults)


class FakeStdin:
    """Records what the runner writes; optionally fails like a broken pipe."""

    def __init__(self, *, fail: bool = False) -> None:
        self.data = b""
        self.closed = False
        self._fail = fail

    def write(self, data: bytes) -> None:
        if self._fail:
            raise BrokenPipeError("stdin closed")
        self.data += data

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None


class FakeProcess:
    """Simulates asyncio.subprocess.Process for testing.

    Must be created inside a running event loop (StreamReader needs one).
    """

    def __init__(self, *, stdin_fails: bool = False, stdout_limit: int = 2**16) -> None:
        self.stdin = FakeStdin(fail=stdin_fails)
        self.stdout = asyncio.StreamReader(limit=stdout_limit)
        self.stderr = asyncio.StreamReader()
        self._returncode: int | None = None
        self._wait_event = asyncio.Event()
        self.pid = 12345
        self.killed = False

    def emit_stdout(self, data: bytes) -> None:
        self.stdout.feed_data(data)

    def emit_stderr(self, data: bytes) -> None:
        self.stderr.feed_data(data)

    def emit_events(self, *events: str) -> None:
        for event in events:
            self.emit_stdout(event.encode() + b"\n")

    def close(self, code: int = 0) -> None:
        """Simulate process exit."""
        if self._returncode is not None:
            return
        self._returncode = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._wait_event.set()

    async def wait(self) -> int:
        await self._wait_event.wait()
        return self._returncode  # type: ignore[return-value]

    def kill(self) -> None:
        self.killed = True
        self.close(-9)

    @property
    def returncode(self) -> int | None:
        return self._returncode


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Ensure each test starts with a clean Settings singleton.

    Uses ``make_settings()`` to build from pure defaults: no codexpipe.toml,
    no .env, no file I/O.
    """
    monkeypatch.setattr("codexpipe.config._settings", make_settings())
