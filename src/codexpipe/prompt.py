"""Prompt building: chat messages to the payload written on the CLI's stdin.

Chat messages arrive in the Anthropic ``MessageParam`` shape::

    {"role": "user", "content": "hi"}
    {"role": "user", "content": [{"type": "text", "text": "hi"},
                                 {"type": "image", "source": {...}}]}

The Codex CLI cannot take images, so every image block is swapped for a text
placeholder here. Nothing past this module ever sees an image block.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any

from codexpipe.errors import MalformedMessageError
from codexpipe.types import (
    ContentBlock,
    PromptFormat,
    PromptPayload,
    StructuredMessage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)


def build_prompt_payload(
    system_prompt: str | None,
    messages: Iterable[Mapping[str, Any]],
) -> PromptPayload:
    """Build the request payload from a system prompt and chat messages."""
    trimmed = (system_prompt or "").strip()
    return PromptPayload(
        system_prompt=trimmed or None,
        messages=[_convert_message(m) for m in messages],
    )


def _convert_message(message: Mapping[str, Any]) -> StructuredMessage:
    role = "assistant" if message.get("role") == "assistant" else "user"
    content = message.get("content")
    if isinstance(content, str):
        return StructuredMessage(role=role, content=content)
    if content is None:
        return StructuredMessage(role=role, content="")
    if not isinstance(content, list):
        raise MalformedMessageError(f"Unsupported message content: {type(content).__name__}")
    return StructuredMessage(role=role, content=[filter_content_block(b) for b in content])


def filter_content_block(block: Any) -> ContentBlock:
    """Translate one chat content block into a payload block.

    Raises MalformedMessageError for anything that is neither a string nor a
    recognized block kind.
    """
    if isinstance(block, str):
        return TextBlock(text=block)
    if not isinstance(block, Mapping):
        raise MalformedMessageError(f"Unsupported content block: {type(block).__name__}")

    match block.get("type"):
        case "text":
            return TextBlock(text=str(block.get("text") or ""))
        case "tool_use":
            return ToolUseBlock(
                id=block.get("id"),
                name=str(block.get("name") or ""),
                input=block.get("input"),
            )
        case "tool_result":
            return ToolResultBlock(
                tool_use_id=block.get("tool_use_id"),
                content=_tool_result_content(block.get("content")),
            )
        case "image":
            return _image_placeholder(block)
        case other:
            raise MalformedMessageError(f"Unsupported content block type: {other!r}")


def _tool_result_content(content: Any) -> str | list[TextBlock]:
    """Keep nested text blocks, drop everything else (images included)."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        raise MalformedMessageError(f"Unsupported tool result content: {type(content).__name__}")
    parts: list[TextBlock] = []
    for nested in content:
        if isinstance(nested, str):
            parts.append(TextBlock(text=nested))
        elif isinstance(nested, Mapping) and nested.get("type") == "text":
            parts.append(TextBlock(text=str(nested.get("text") or "")))
    return parts


def _image_placeholder(block: Mapping[str, Any]) -> TextBlock:
    source = block.get("source")
    if not isinstance(source, Mapping):
        source = {}
    source_type = source.get("type") or "unknown"
    media_type = source.get("media_type") or "unknown"
    return TextBlock(text=f"[Image ({source_type}): {media_type} not supported by Codex CLI]")


# ---------------------------------------------------------------------------
# Wire forms
# ---------------------------------------------------------------------------


def _block_to_dict(block: ContentBlock) -> dict[str, Any]:
    match block:
        case TextBlock():
            return {"type": "text", "text": block.text}
        case ToolUseBlock():
            d: dict[str, Any] = {"type": "tool_use", "name": block.name, "input": block.input}
            if block.id is not None:
                d["id"] = block.id
            return d
        case ToolResultBlock():
            content: Any = block.content
            if not isinstance(content, str):
                content = [_block_to_dict(b) for b in content]
            d = {"type": "tool_result", "content": content}
            if block.tool_use_id is not None:
                d["tool_use_id"] = block.tool_use_id
            return d
    raise MalformedMessageError(f"Unsupported payload block: {type(block).__name__}")


def payload_to_dict(payload: PromptPayload) -> dict[str, Any]:
    """Convert a PromptPayload to the JSON-ready dict written on stdin."""
    d: dict[str, Any] = {}
    if payload.system_prompt:
        d["systemPrompt"] = payload.system_prompt
    d["messages"] = [
        {
            "role": m.role,
            "content": m.content
            if isinstance(m.content, str)
            else [_block_to_dict(b) for b in m.content],
        }
        for m in payload.messages
    ]
    return d


def _block_to_text(block: ContentBlock) -> str:
    match block:
        case TextBlock():
            return block.text
        case ToolUseBlock():
            return f"[Tool Use: {block.name}]\n{json.dumps(block.input, default=str)}"
        case ToolResultBlock():
            if isinstance(block.content, str):
                body = block.content
            else:
                body = "\n".join(b.text for b in block.content)
            return f"[Tool Result]\n{body}"
    return ""


def render_transcript(payload: PromptPayload) -> str:
    """Render ``System: ...`` / ``User: ...`` / ``Assistant: ...`` plain text."""
    parts: list[str] = []
    if payload.system_prompt:
        parts.append(f"System: {payload.system_prompt}")
    for message in payload.messages:
        if isinstance(message.content, str):
            text = message.content
        else:
            text = "\n".join(t for t in (_block_to_text(b) for b in message.content) if t)
        if not text:
            continue
        label = "Assistant" if message.role == "assistant" else "User"
        parts.append(f"{label}: {text}")
    return "\n\n".join(parts)


def serialize_payload(payload: PromptPayload, fmt: PromptFormat = "json") -> str:
    if fmt == "transcript":
        return render_transcript(payload)
    return json.dumps(payload_to_dict(payload), ensure_ascii=False)
