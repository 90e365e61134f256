"""Argument and environment construction for ``codex exec``."""

from __future__ import annotations

import os
from collections.abc import Mapping

from codexpipe.types import InvocationRequest

# Non-interactive execution with newline-delimited JSON events on stdout.
EXEC_BASE_ARGS = ("exec", "--json")


def build_exec_args(request: InvocationRequest) -> list[str]:
    """Build the argv tail (without the binary) for one invocation.

    Optional flags are appended only when their option is set; blank strings
    count as unset.
    """
    args = list(EXEC_BASE_ARGS)

    model_id = (request.model_id or "").strip()
    if model_id:
        args += ["--model", model_id]

    output_schema = (request.output_schema or "").strip()
    if output_schema:
        args += ["--output-schema", output_schema]

    sandbox = (request.sandbox or "").strip()
    if sandbox:
        args += ["--sandbox", sandbox]

    if request.full_auto:
        args.append("--full-auto")

    return args


def merge_env(overrides: Mapping[str, str] | None = None) -> dict[str, str]:
    """Inherited process environment with *overrides* layered on top."""
    return {**os.environ, **(overrides or {})}
