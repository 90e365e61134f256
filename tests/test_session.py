"""Tests for CodexCliSession: auth resolution, request building, stream shaping."""

from __future__ import annotations

import contextlib
import json
from unittest.mock import AsyncMock, patch

import pytest
from conftest import FakeProcess, make_settings
from pydantic import SecretStr

from codexpipe.config import CodexConfig, SecretsConfig
from codexpipe.errors import LoginFailedError, ProcessExitError, ProtocolEventError
from codexpipe.models import CODEX_CLI_MODELS, DEFAULT_MODEL_ID, calculate_api_cost_openai
from codexpipe.session import CodexCliSession
from codexpipe.types import TextChunk, UsageChunk


class FakeExec:
    """Stand-in for runner.run_exec that replays canned events."""

    def __init__(self, *events) -> None:
        self.events = events
        self.requests = []
        self.closed = False

    async def __call__(self, request):
        self.requests.append(request)
        try:
            for event in self.events:
                yield event
        finally:
            self.closed = True


def _session(events=(), *, codex: CodexConfig | None = None, api_key: str | None = None, **kw):
    secrets = SecretsConfig(codex_api_key=SecretStr(api_key)) if api_key else SecretsConfig()
    settings = make_settings(codex=codex or CodexConfig(model_id="gpt-5.1-codex"), secrets=secrets)
    fake_exec = FakeExec(*events)
    login = kw.pop("ensure_login", AsyncMock())
    session = CodexCliSession(settings, run_exec=fake_exec, ensure_login=login, **kw)
    return session, fake_exec, login


async def _collect(session, system="System prompt", messages=None):
    messages = messages or [{"role": "user", "content": "Hello"}]
    chunks = []
    async with contextlib.aclosing(session.create_message(system, messages)) as stream:
        async for chunk in stream:
            chunks.append(chunk)
    return chunks


class TestGetModel:
    def test_configured_model(self):
        session, _, _ = _session()
        model_id, info = session.get_model()
        assert model_id == "gpt-5.1-codex"
        assert info.supports_images is False

    def test_invalid_model_falls_back(self):
        session, _, _ = _session(codex=CodexConfig(model_id="invalid-model"))
        assert session.get_model()[0] == DEFAULT_MODEL_ID

    @pytest.mark.asyncio
    async def test_blank_model_uses_default_descriptor(self):
        session, fake_exec, _ = _session(
            [{"type": "response.completed", "usage": {"input_tokens": 1_000_000}}],
            codex=CodexConfig(model_id="   "),
        )
        model_id, info = session.get_model()
        assert model_id == DEFAULT_MODEL_ID
        assert info is CODEX_CLI_MODELS[DEFAULT_MODEL_ID]

        (chunk,) = await _collect(session)
        assert fake_exec.requests[0].model_id == DEFAULT_MODEL_ID
        assert chunk.total_cost == calculate_api_cost_openai(info, 1_000_000, 0, 0, 0)


class TestCreateMessage:
    @pytest.mark.asyncio
    async def test_builds_request_from_prompt_and_settings(self):
        session, fake_exec, login = _session()
        await _collect(
            session,
            "You are a helpful assistant.",
            [
                {"role": "user", "content": "Hello"},
                {"role": "assistant", "content": "Hi there"},
            ],
        )

        (request,) = fake_exec.requests
        assert request.binary_path == "codex"
        assert request.model_id == "gpt-5.1-codex"
        assert request.payload.system_prompt == "You are a helpful assistant."
        assert [(m.role, m.content) for m in request.payload.messages] == [
            ("user", "Hello"),
            ("assistant", "Hi there"),
        ]
        login.assert_awaited_once_with("codex", {}, cwd=None)

    @pytest.mark.asyncio
    async def test_streams_text_deltas(self):
        session, _, _ = _session(
            [{"type": "response.output_text.delta", "delta": "Hello from Codex"}]
        )
        assert await _collect(session) == [TextChunk(text="Hello from Codex")]

    @pytest.mark.asyncio
    async def test_usage_chunk(self):
        session, _, _ = _session(
            [{"type": "response.completed", "usage": {"input_tokens": 10, "output_tokens": 5}}]
        )
        _, info = session.get_model()
        assert await _collect(session) == [
            UsageChunk(
                input_tokens=10,
                output_tokens=5,
                cache_write_tokens=None,
                cache_read_tokens=None,
                reasoning_tokens=None,
                total_cost=calculate_api_cost_openai(info, 10, 5, 0, 0),
            )
        ]

    @pytest.mark.asyncio
    async def test_error_event_raises_without_chunks(self):
        session, fake_exec, _ = _session(
            [
                {"type": "response.error", "error": {"message": "Bad request"}},
                {"type": "response.output_text.delta", "delta": "never seen"},
            ]
        )
        chunks = []
        with pytest.raises(ProtocolEventError, match="Bad request"):
            async for chunk in session.create_message("sys", [{"role": "user", "content": "x"}]):
                chunks.append(chunk)
        assert chunks == []
        assert fake_exec.closed

    @pytest.mark.asyncio
    async def test_no_chunks_after_error(self):
        session, _, _ = _session(
            [
                {"type": "response.output_text.delta", "delta": "before"},
                {"type": "turn.failed", "error": "stream disconnected"},
                {"type": "response.output_text.delta", "delta": "after"},
            ]
        )
        chunks = []
        with pytest.raises(ProtocolEventError, match="stream disconnected"):
            async for chunk in session.create_message(None, [{"role": "user", "content": "x"}]):
                chunks.append(chunk)
        assert chunks == [TextChunk(text="before")]

    @pytest.mark.asyncio
    async def test_abandoned_stream_closes_process_stream(self):
        session, fake_exec, _ = _session(
            [
                {"type": "response.output_text.delta", "delta": "one"},
                {"type": "response.output_text.delta", "delta": "two"},
            ]
        )
        async with contextlib.aclosing(
            session.create_message(None, [{"role": "user", "content": "x"}])
        ) as stream:
            async for _chunk in stream:
                break
        assert fake_exec.closed

    @pytest.mark.asyncio
    async def test_passes_codex_options_through(self):
        session, fake_exec, _ = _session(
            codex=CodexConfig(
                path="/usr/local/bin/codex",
                sandbox="workspace-write",
                output_schema="/tmp/schema.json",
                full_auto=True,
                prompt_format="transcript",
                cwd="/repo",
            )
        )
        await _collect(session)
        (request,) = fake_exec.requests
        assert request.binary_path == "/usr/local/bin/codex"
        assert request.sandbox == "workspace-write"
        assert request.output_schema == "/tmp/schema.json"
        assert request.full_auto is True
        assert request.prompt_format == "transcript"
        assert request.cwd == "/repo"


class TestAuthModes:
    @pytest.mark.asyncio
    async def test_api_key_mode_skips_login_and_sets_env(self):
        session, fake_exec, login = _session(
            codex=CodexConfig(auth_mode="api-key"), api_key="sk-test-123"
        )
        await _collect(session)
        login.assert_not_awaited()
        assert fake_exec.requests[0].extra_env == {"OPENAI_API_KEY": "sk-test-123"}

    @pytest.mark.asyncio
    async def test_api_key_env_var_is_configurable(self):
        session, fake_exec, _ = _session(
            codex=CodexConfig(auth_mode="api-key", api_key_env_var="CODEX_API_KEY"),
            api_key="sk-x",
        )
        await _collect(session)
        assert fake_exec.requests[0].extra_env == {"CODEX_API_KEY": "sk-x"}

    @pytest.mark.asyncio
    async def test_api_key_mode_without_key(self):
        session, fake_exec, login = _session(codex=CodexConfig(auth_mode="api-key"))
        await _collect(session)
        login.assert_not_awaited()
        assert fake_exec.requests[0].extra_env == {}

    @pytest.mark.asyncio
    async def test_session_mode_ignores_api_key(self):
        session, fake_exec, login = _session(api_key="sk-unused")
        await _collect(session)
        login.assert_awaited_once()
        assert fake_exec.requests[0].extra_env == {}

    @pytest.mark.asyncio
    async def test_login_failure_prevents_process_start(self):
        login = AsyncMock(side_effect=LoginFailedError("login failed"))
        session, fake_exec, _ = _session(ensure_login=login)
        with pytest.raises(LoginFailedError):
            await _collect(session)
        assert fake_exec.requests == []


class TestEndToEnd:
    """Real runner and auth code, with the subprocess faked."""

    @pytest.mark.asyncio
    async def test_authenticated_session_streams_chunks(self):
        status_proc = AsyncMock()
        status_proc.communicate = AsyncMock(return_value=(b'{"authenticated": true}', b""))
        status_proc.returncode = 0

        exec_proc = FakeProcess()
        exec_proc.emit_events(
            '{"type": "thread.started", "thread_id": "t1"}',
            '{"type": "response.output_text.delta", "delta": "Hi"}',
            "WARN: noisy diagnostic line",
            '{"type": "response.completed", "usage": {"input_tokens": 3, "output_tokens": 1}}',
        )
        exec_proc.close(0)

        spawn = AsyncMock(side_effect=[status_proc, exec_proc])
        settings = make_settings(codex=CodexConfig(model_id="gpt-5.1-codex"))
        with patch("asyncio.create_subprocess_exec", spawn):
            chunks = await _collect(CodexCliSession(settings), "sys", None)

        assert spawn.call_count == 2
        assert spawn.call_args_list[0].args == ("codex", "auth", "status", "--json")
        assert spawn.call_args_list[1].args[:3] == ("codex", "exec", "--json")
        assert "--model" in spawn.call_args_list[1].args
        assert chunks[0] == TextChunk(text="Hi")
        assert isinstance(chunks[1], UsageChunk)
        assert json.loads(exec_proc.stdin.data)["systemPrompt"] == "sys"

    @pytest.mark.asyncio
    async def test_exit_failure_surfaces_after_chunks(self):
        exec_proc = FakeProcess()
        exec_proc.emit_events('{"type": "response.output_text.delta", "delta": "partial"}')
        exec_proc.emit_stderr(b"Error: unauthorized\n")
        exec_proc.close(1)

        settings = make_settings(
            codex=CodexConfig(auth_mode="api-key"),
            secrets=SecretsConfig(codex_api_key=SecretStr("sk-bad")),
        )
        chunks = []
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=exec_proc)) as spawn:
            with pytest.raises(ProcessExitError, match="unauthorized"):
                async for chunk in CodexCliSession(settings).create_message(
                    None, [{"role": "user", "content": "x"}]
                ):
                    chunks.append(chunk)

        assert chunks == [TextChunk(text="partial")]
        assert spawn.call_args.kwargs["env"]["OPENAI_API_KEY"] == "sk-bad"
