"""Process runner: drives ``codex exec`` as a subprocess.

Spawns the CLI, writes the prompt payload on stdin, streams stdout lines,
accumulates stderr, and reconciles exit status with runtime failures.

This package is split into focused submodules:
  _args       argv and environment construction
  _process    ProcessHandle state, helper tasks, line reading and cleanup
"""

# Re-export public API so that `from codexpipe.runner import X` keeps working.

from codexpipe.runner._args import EXEC_BASE_ARGS, build_exec_args, merge_env
from codexpipe.runner._process import (
    ProcessHandle,
    ProcessPhase,
    parse_event_line,
    read_lines,
    run_exec,
    start_process,
)

__all__ = [
    "EXEC_BASE_ARGS",
    "ProcessHandle",
    "ProcessPhase",
    "build_exec_args",
    "merge_env",
    "parse_event_line",
    "read_lines",
    "run_exec",
    "start_process",
]
