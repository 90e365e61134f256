"""Event normalization: Codex CLI JSON events to StreamChunks.

Different CLI versions emit different shapes for the same content. Each shape
is handled by one rule in ``_RULES``; rules are tried in order and the first
whose guard matches owns the event, even if it produces no chunk (an empty
text delta, for example). Raw events never leave this module: every chunk
field is type-checked before a StreamChunk is built.

Error events are screened separately by :func:`extract_event_error` before
any rule runs.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from codexpipe.models import CostFunction, calculate_api_cost_openai
from codexpipe.types import (
    ModelDescriptor,
    ReasoningChunk,
    StreamChunk,
    TextChunk,
    ToolCallPartialChunk,
)
from codexpipe.usage import normalize_usage

GENERIC_ERROR_MESSAGE = "Codex CLI returned an error."

TEXT_DELTA_TYPES = frozenset({"response.text.delta", "response.output_text.delta"})
REASONING_DELTA_TYPES = frozenset(
    {
        "response.reasoning.delta",
        "response.reasoning_text.delta",
        "response.reasoning_summary.delta",
        "response.reasoning_summary_text.delta",
    }
)
TOOL_CALL_DELTA_TYPES = frozenset(
    {"response.tool_call_arguments.delta", "response.function_call_arguments.delta"}
)
OUTPUT_ITEM_TYPES = frozenset({"response.output_item.added", "response.output_item.done"})
COMPLETED_TYPES = frozenset({"response.completed", "response.done"})
_MESSAGE_TEXT_TYPES = frozenset({"text", "output_text"})


# ---------------------------------------------------------------------------
# Error screening
# ---------------------------------------------------------------------------


def extract_event_error(event: Any) -> str | None:
    """Return the failure message if *event* signals an error, else None.

    An event is an error if its type mentions "error", its status is
    "error", or it carries a truthy ``error`` field.
    """
    if not isinstance(event, dict):
        return None

    event_type = event.get("type")
    has_error_type = isinstance(event_type, str) and "error" in event_type
    error_field = event.get("error")
    if not (has_error_type or event.get("status") == "error" or error_field):
        return None

    payload = error_field if error_field is not None else event
    if isinstance(payload, str) and payload:
        return payload
    if isinstance(payload, dict):
        message = payload.get("message")
        if isinstance(message, str) and message:
            return message
    message = event.get("message")
    if isinstance(message, str) and message:
        return message
    return GENERIC_ERROR_MESSAGE


# ---------------------------------------------------------------------------
# Rule helpers
# ---------------------------------------------------------------------------


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _first_str(event: dict[str, Any], *keys: str) -> str | None:
    return next((v for k in keys if (v := _str_or_none(event.get(k))) is not None), None)


def _type_in(types: frozenset[str]) -> Callable[[dict[str, Any]], bool]:
    return lambda event: event.get("type") in types


@dataclass(frozen=True)
class _Context:
    model: ModelDescriptor
    cost_fn: CostFunction


def _usage_object(event: dict[str, Any]) -> Any:
    response = event.get("response")
    if isinstance(response, dict) and isinstance(response.get("usage"), dict):
        return response["usage"]
    return event.get("usage")


# ---------------------------------------------------------------------------
# Translators (one per dialect)
# ---------------------------------------------------------------------------


def _text_delta(event: dict[str, Any], ctx: _Context) -> list[StreamChunk]:
    delta = _str_or_none(event.get("delta"))
    return [TextChunk(text=delta)] if delta else []


def _reasoning_delta(event: dict[str, Any], ctx: _Context) -> list[StreamChunk]:
    delta = _str_or_none(event.get("delta"))
    return [ReasoningChunk(text=delta)] if delta else []


def _tool_call_delta(event: dict[str, Any], ctx: _Context) -> list[StreamChunk]:
    index = event.get("index")
    if isinstance(index, bool) or not isinstance(index, int):
        index = 0
    return [
        ToolCallPartialChunk(
            index=index,
            id=_first_str(event, "call_id", "tool_call_id", "id"),
            name=_first_str(event, "name", "function_name"),
            arguments=_first_str(event, "delta", "arguments") or "",
        )
    ]


def _output_item(event: dict[str, Any], ctx: _Context) -> list[StreamChunk]:
    item = event.get("item")
    if not isinstance(item, dict):
        return []
    item_type = item.get("type")
    text = _str_or_none(item.get("text"))
    if item_type == "text" and text:
        return [TextChunk(text=text)]
    if item_type == "reasoning" and text:
        return [ReasoningChunk(text=text)]
    if item_type == "message" and isinstance(item.get("content"), list):
        chunks: list[StreamChunk] = []
        for block in item["content"]:
            if not isinstance(block, dict) or block.get("type") not in _MESSAGE_TEXT_TYPES:
                continue
            if block_text := _str_or_none(block.get("text")):
                chunks.append(TextChunk(text=block_text))
        return chunks
    return []


def _usage(event: dict[str, Any], ctx: _Context) -> list[StreamChunk]:
    chunk = normalize_usage(_usage_object(event), ctx.model, ctx.cost_fn)
    return [chunk] if chunk else []


def _has_chat_delta(event: dict[str, Any]) -> bool:
    choices = event.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return False
    delta = choices[0].get("delta")
    return isinstance(delta, dict) and bool(_str_or_none(delta.get("content")))


def _chat_delta(event: dict[str, Any], ctx: _Context) -> list[StreamChunk]:
    return [TextChunk(text=event["choices"][0]["delta"]["content"])]


def _has_item_text(event: dict[str, Any]) -> bool:
    item = event.get("item")
    return isinstance(item, dict) and bool(_str_or_none(item.get("text")))


def _item_text(event: dict[str, Any], ctx: _Context) -> list[StreamChunk]:
    return [TextChunk(text=event["item"]["text"])]


def _has_message_text(event: dict[str, Any]) -> bool:
    message = event.get("message")
    return isinstance(message, dict) and bool(_str_or_none(message.get("content")))


def _message_text(event: dict[str, Any], ctx: _Context) -> list[StreamChunk]:
    return [TextChunk(text=event["message"]["content"])]


def _bare_text(event: dict[str, Any], ctx: _Context) -> list[StreamChunk]:
    return [TextChunk(text=event["text"])]


@dataclass(frozen=True)
class _Rule:
    name: str
    matches: Callable[[dict[str, Any]], bool]
    translate: Callable[[dict[str, Any], _Context], list[StreamChunk]]


# Priority order. First match wins.
_RULES: tuple[_Rule, ...] = (
    _Rule("text_delta", _type_in(TEXT_DELTA_TYPES), _text_delta),
    _Rule("reasoning_delta", _type_in(REASONING_DELTA_TYPES), _reasoning_delta),
    _Rule("tool_call_delta", _type_in(TOOL_CALL_DELTA_TYPES), _tool_call_delta),
    _Rule("output_item", _type_in(OUTPUT_ITEM_TYPES), _output_item),
    _Rule("completed", _type_in(COMPLETED_TYPES), _usage),
    _Rule("chat_completion_delta", _has_chat_delta, _chat_delta),
    _Rule("item_text", _has_item_text, _item_text),
    _Rule("message_text", _has_message_text, _message_text),
    _Rule("bare_text", lambda e: bool(_str_or_none(e.get("text"))), _bare_text),
    _Rule("usage", lambda e: _usage_object(e) is not None, _usage),
)


def normalize_event(
    event: Any,
    model: ModelDescriptor,
    cost_fn: CostFunction = calculate_api_cost_openai,
) -> list[StreamChunk]:
    """Translate one raw event into zero or more chunks.

    Does not screen for errors; call :func:`extract_event_error` first.
    """
    if not isinstance(event, dict):
        return []
    ctx = _Context(model=model, cost_fn=cost_fn)
    for rule in _RULES:
        if rule.matches(event):
            return rule.translate(event, ctx)
    return []
