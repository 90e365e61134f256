"""Codex CLI model registry and OpenAI-style cost calculation.

The registry is static, process-wide data. Lookups never mutate it.
"""

from __future__ import annotations

from collections.abc import Callable

from codexpipe.types import ModelDescriptor

CostFunction = Callable[[ModelDescriptor, int, int, int, int], float]

DEFAULT_MODEL_ID = "gpt-5.1-codex-max"

CODEX_CLI_MODELS: dict[str, ModelDescriptor] = {
    "gpt-5.1-codex-max": ModelDescriptor(
        context_window=400_000,
        max_tokens=128_000,
        input_price=1.25,
        output_price=10.0,
        cache_reads_price=0.125,
        supports_prompt_cache=True,
        description="GPT-5.1 Codex Max: long-horizon agentic coding",
    ),
    "gpt-5.1-codex": ModelDescriptor(
        context_window=400_000,
        max_tokens=128_000,
        input_price=1.25,
        output_price=10.0,
        cache_reads_price=0.125,
        supports_prompt_cache=True,
        description="GPT-5.1 Codex: agentic coding",
    ),
    "gpt-5.1-codex-mini": ModelDescriptor(
        context_window=400_000,
        max_tokens=128_000,
        input_price=0.25,
        output_price=2.0,
        cache_reads_price=0.025,
        supports_prompt_cache=True,
        description="GPT-5.1 Codex Mini: faster, cheaper coding model",
    ),
}


def get_model(model_id: str | None) -> tuple[str, ModelDescriptor]:
    """Resolve *model_id* against the registry, falling back to the default.

    Blank ids (after trimming) and unknown ids both resolve to
    :data:`DEFAULT_MODEL_ID`.
    """
    resolved = (model_id or "").strip()
    if resolved in CODEX_CLI_MODELS:
        return resolved, CODEX_CLI_MODELS[resolved]
    return DEFAULT_MODEL_ID, CODEX_CLI_MODELS[DEFAULT_MODEL_ID]


def calculate_api_cost_openai(
    info: ModelDescriptor,
    input_tokens: int,
    output_tokens: int,
    cache_write_tokens: int = 0,
    cache_read_tokens: int = 0,
) -> float:
    """Total USD cost for one response.

    OpenAI reports cached tokens as part of ``input_tokens``, so only the
    uncached remainder is billed at the full input price.
    """
    uncached = max(0, input_tokens - cache_write_tokens - cache_read_tokens)
    cost = (
        info.input_price * uncached
        + (info.cache_writes_price or 0.0) * cache_write_tokens
        + (info.cache_reads_price or 0.0) * cache_read_tokens
        + info.output_price * output_tokens
    )
    return cost / 1_000_000
