"""Data models for codexpipe."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["user", "assistant"]
PromptFormat = Literal["json", "transcript"]


# ---------------------------------------------------------------------------
# Prompt payload (what gets written to the CLI's stdin)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextBlock:
    text: str
    type: Literal["text"] = field(default="text", init=False)


@dataclass(frozen=True)
class ToolUseBlock:
    name: str
    input: Any
    id: str | None = None
    type: Literal["tool_use"] = field(default="tool_use", init=False)


@dataclass(frozen=True)
class ToolResultBlock:
    content: str | list[TextBlock]
    tool_use_id: str | None = None
    type: Literal["tool_result"] = field(default="tool_result", init=False)


ContentBlock = TextBlock | ToolUseBlock | ToolResultBlock


@dataclass(frozen=True)
class StructuredMessage:
    role: Role
    content: str | list[ContentBlock]


@dataclass(frozen=True)
class PromptPayload:
    messages: list[StructuredMessage] = field(default_factory=list)
    system_prompt: str | None = None  # omitted when blank


# ---------------------------------------------------------------------------
# Invocation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InvocationRequest:
    """Everything needed to run one ``codex exec`` process. Built once per call."""

    payload: PromptPayload
    binary_path: str = "codex"
    model_id: str | None = None
    output_schema: str | None = None
    sandbox: str | None = None
    full_auto: bool = False
    extra_env: dict[str, str] = field(default_factory=dict)
    prompt_format: PromptFormat = "json"
    cwd: str | None = None
    max_line_bytes: int = 64 * 1024 * 1024
    max_stderr_size: int = 1024 * 1024


# ---------------------------------------------------------------------------
# Normalized output stream
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextChunk:
    text: str
    type: Literal["text"] = field(default="text", init=False)


@dataclass(frozen=True)
class ReasoningChunk:
    text: str
    type: Literal["reasoning"] = field(default="reasoning", init=False)


@dataclass(frozen=True)
class ToolCallPartialChunk:
    index: int
    arguments: str
    id: str | None = None
    name: str | None = None
    type: Literal["tool_call_partial"] = field(default="tool_call_partial", init=False)


@dataclass(frozen=True)
class UsageChunk:
    """Token accounting for one response. ``total_cost`` is always derived."""

    input_tokens: int
    output_tokens: int
    total_cost: float
    cache_write_tokens: int | None = None  # None when zero
    cache_read_tokens: int | None = None  # None when zero
    reasoning_tokens: int | None = None
    type: Literal["usage"] = field(default="usage", init=False)


StreamChunk = TextChunk | ReasoningChunk | ToolCallPartialChunk | UsageChunk


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuthStatus:
    authenticated: bool
    source: Literal["structured-probe", "heuristic-probe"]
    detail: str | None = None  # error text when the probe failed
    raw: Any = None  # parsed structured-probe output, if any


# ---------------------------------------------------------------------------
# Model registry entries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelDescriptor:
    """Static capability and pricing data. Prices are USD per million tokens."""

    context_window: int
    max_tokens: int
    input_price: float
    output_price: float
    supports_images: bool = False
    supports_prompt_cache: bool = False
    cache_reads_price: float | None = None
    cache_writes_price: float | None = None
    description: str = ""
