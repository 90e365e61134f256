"""Entry point for `python -m codexpipe` / `codexpipe`.

Subcommands:
    codexpipe ask PROMPT     Stream a completion as JSON lines
    codexpipe auth-status    Print the Codex CLI auth status
    codexpipe login          Log in unless already authenticated
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import os
import sys

from codexpipe.errors import CodexError


async def _ask(prompt: str, system: str | None, model: str | None) -> None:
    from codexpipe.config import get_settings
    from codexpipe.session import CodexCliSession

    settings = get_settings()
    if model:
        settings = settings.model_copy(
            update={"codex": settings.codex.model_copy(update={"model_id": model})}
        )
    session = CodexCliSession(settings)
    async for chunk in session.create_message(system, [{"role": "user", "content": prompt}]):
        print(json.dumps(dataclasses.asdict(chunk)), flush=True)


async def _auth_status() -> None:
    from codexpipe.auth import get_auth_status
    from codexpipe.config import get_settings

    codex = get_settings().codex
    status = await get_auth_status(codex.path, cwd=codex.cwd)
    print(json.dumps(dataclasses.asdict(status), default=str))


async def _login() -> None:
    from codexpipe.auth import ensure_login
    from codexpipe.config import get_settings

    codex = get_settings().codex
    await ensure_login(codex.path, cwd=codex.cwd)
    print("Codex CLI is authenticated.")


def main() -> None:
    from codexpipe.config import get_settings
    from codexpipe.logger import install_excepthook, set_level

    install_excepthook()

    parser = argparse.ArgumentParser(
        prog="codexpipe",
        description="Stream completions from the Codex CLI",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    ask = sub.add_parser("ask", help="Stream a completion as JSON lines")
    ask.add_argument("prompt", help="User prompt")
    ask.add_argument("--system", default=None, help="System prompt")
    ask.add_argument(
        "--model", default=None, help="Model id (default: configured or registry default)"
    )
    sub.add_parser("auth-status", help="Print the Codex CLI auth status as JSON")
    sub.add_parser("login", help="Run codex login unless already authenticated")

    args = parser.parse_args()
    if "LOG_LEVEL" not in os.environ:
        set_level(get_settings().logging.level)

    try:
        match args.command:
            case "ask":
                asyncio.run(_ask(args.prompt, args.system, args.model))
            case "auth-status":
                asyncio.run(_auth_status())
            case "login":
                asyncio.run(_login())
    except CodexError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
