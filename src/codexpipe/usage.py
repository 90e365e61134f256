"""Usage accounting across the CLI's legacy usage field names.

Known spellings:
  input        input_tokens | prompt_tokens
  output       output_tokens | completion_tokens
  cache write  cache_creation_input_tokens | cache_write_tokens
  cache read   cache_read_input_tokens | cache_read_tokens | cached_tokens
               | {input,prompt}_tokens_details.cached_tokens

Some dialects omit the flat input total and only report the cached/missed
split under the details object; the total is rebuilt from those.
"""

from __future__ import annotations

from typing import Any

from codexpipe.models import CostFunction, calculate_api_cost_openai
from codexpipe.types import ModelDescriptor, UsageChunk


def _first_present(data: dict[str, Any], *keys: str) -> Any:
    return next((data[k] for k in keys if data.get(k) is not None), None)


def _token_count(value: Any) -> int:
    """Coerce a reported count to a non-negative int; anything else is 0."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return 0
    return max(0, int(value))


def normalize_usage(
    usage: Any,
    model: ModelDescriptor,
    cost_fn: CostFunction = calculate_api_cost_openai,
) -> UsageChunk | None:
    """Build a UsageChunk from a raw usage object, or None if there is none."""
    if not isinstance(usage, dict):
        return None

    details = _first_present(usage, "input_tokens_details", "prompt_tokens_details")
    if not isinstance(details, dict):
        details = {}
    cached_tokens = _token_count(details.get("cached_tokens"))
    cache_miss_tokens = _token_count(details.get("cache_miss_tokens"))

    input_tokens = _token_count(_first_present(usage, "input_tokens", "prompt_tokens"))
    if input_tokens == 0 and (cached_tokens > 0 or cache_miss_tokens > 0):
        input_tokens = cached_tokens + cache_miss_tokens

    output_tokens = _token_count(_first_present(usage, "output_tokens", "completion_tokens"))
    cache_write_tokens = _token_count(
        _first_present(usage, "cache_creation_input_tokens", "cache_write_tokens")
    )
    cache_read_value = _first_present(
        usage, "cache_read_input_tokens", "cache_read_tokens", "cached_tokens"
    )
    cache_read_tokens = (
        _token_count(cache_read_value) if cache_read_value is not None else cached_tokens
    )

    total_cost = cost_fn(model, input_tokens, output_tokens, cache_write_tokens, cache_read_tokens)

    output_details = usage.get("output_tokens_details")
    reasoning_tokens = None
    if isinstance(output_details, dict):
        reasoning = output_details.get("reasoning_tokens")
        if isinstance(reasoning, int | float) and not isinstance(reasoning, bool):
            reasoning_tokens = _token_count(reasoning)

    return UsageChunk(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cache_write_tokens=cache_write_tokens or None,
        cache_read_tokens=cache_read_tokens or None,
        reasoning_tokens=reasoning_tokens,
        total_cost=total_cost,
    )
