"""Streaming adapter for the Codex CLI.

Drives ``codex exec --json`` as a subprocess and turns its newline-delimited
JSON events into a stream of typed chunks (text, reasoning, partial tool
calls, usage).
"""

from codexpipe.errors import (
    BinaryNotFoundError,
    CodexError,
    LoginFailedError,
    MalformedMessageError,
    ProcessExitError,
    ProcessRuntimeError,
    ProtocolEventError,
)
from codexpipe.session import CodexCliSession
from codexpipe.types import (
    AuthStatus,
    ReasoningChunk,
    StreamChunk,
    TextChunk,
    ToolCallPartialChunk,
    UsageChunk,
)

__all__ = [
    "AuthStatus",
    "BinaryNotFoundError",
    "CodexCliSession",
    "CodexError",
    "LoginFailedError",
    "MalformedMessageError",
    "ProcessExitError",
    "ProcessRuntimeError",
    "ProtocolEventError",
    "ReasoningChunk",
    "StreamChunk",
    "TextChunk",
    "ToolCallPartialChunk",
    "UsageChunk",
]
