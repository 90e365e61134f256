"""Streaming session: one chat completion through the Codex CLI.

Flow per call: resolve auth → build prompt → start process → screen and
normalize each event → yield chunks. Every call spawns a fresh process; no
state is carried between calls and nothing is retried.
"""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping
from typing import Any

from codexpipe.auth import ensure_login
from codexpipe.config import Settings, get_settings
from codexpipe.errors import ProtocolEventError
from codexpipe.logger import logger
from codexpipe.models import CostFunction, calculate_api_cost_openai, get_model
from codexpipe.normalizer import extract_event_error, normalize_event
from codexpipe.prompt import build_prompt_payload
from codexpipe.runner import run_exec
from codexpipe.types import InvocationRequest, ModelDescriptor, StreamChunk

RunExec = Callable[[InvocationRequest], AsyncIterator[Any]]
EnsureLogin = Callable[..., Awaitable[None]]


class CodexCliSession:
    """Adapts the Codex CLI to a chat-completion style chunk stream."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        cost_fn: CostFunction = calculate_api_cost_openai,
        run_exec: RunExec = run_exec,
        ensure_login: EnsureLogin = ensure_login,
    ) -> None:
        self.settings = settings or get_settings()
        self._cost_fn = cost_fn
        self._run_exec = run_exec
        self._ensure_login = ensure_login

    def get_model(self) -> tuple[str, ModelDescriptor]:
        return get_model(self.settings.codex.model_id)

    def _extra_env(self) -> dict[str, str]:
        codex = self.settings.codex
        if codex.auth_mode != "api-key":
            return {}
        api_key = self.settings.api_key
        if not api_key:
            logger.warning("Codex auth_mode is api-key but no API key is configured")
            return {}
        return {codex.api_key_env_var: api_key}

    def build_request(
        self,
        system_prompt: str | None,
        messages: Iterable[Mapping[str, Any]],
        model_id: str,
    ) -> InvocationRequest:
        codex = self.settings.codex
        return InvocationRequest(
            payload=build_prompt_payload(system_prompt, messages),
            binary_path=codex.path,
            model_id=model_id,
            output_schema=codex.output_schema,
            sandbox=codex.sandbox,
            full_auto=codex.full_auto,
            extra_env=self._extra_env(),
            prompt_format=codex.prompt_format,
            cwd=codex.cwd,
            max_line_bytes=codex.max_line_bytes,
            max_stderr_size=codex.max_stderr_size,
        )

    async def create_message(
        self,
        system_prompt: str | None,
        messages: Iterable[Mapping[str, Any]],
    ) -> AsyncIterator[StreamChunk]:
        """Stream normalized chunks for one completion.

        Any error aborts the stream; no chunk follows a raised error.
        """
        model_id, model = self.get_model()
        request = self.build_request(system_prompt, messages, model_id)

        if self.settings.codex.auth_mode != "api-key":
            await self._ensure_login(request.binary_path, request.extra_env, cwd=request.cwd)

        logger.info("Starting Codex CLI completion", model=model_id)
        async with contextlib.aclosing(self._run_exec(request)) as events:
            async for event in events:
                error_message = extract_event_error(event)
                if error_message:
                    raise ProtocolEventError(error_message, event)
                for chunk in normalize_event(event, model, self._cost_fn):
                    yield chunk
