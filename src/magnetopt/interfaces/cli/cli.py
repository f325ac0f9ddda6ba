from __future__ import annotations

import argparse
import asyncio
import os
import sys
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import structlog
import uvicorn

from magnetopt.infrastructure.composition import build_services
from magnetopt.infrastructure.config import AppConfig, load_config
from magnetopt.infrastructure.logging.setup import configure_logging
from magnetopt.interfaces.api.search.presenter import progress_line, snapshot_line
from magnetopt.interfaces.app import create_app

log = structlog.get_logger(__name__)


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default=None,
        help="Path to YAML config file.",
    )
    parser.add_argument(
        "--dotenv",
        default=None,
        help="Path to .env file.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level.",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        choices=["json", "console"],
        help="Override log format.",
    )


def _parse_args(argv: Iterable[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="magnetopt")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument(
        "--host",
        default=None,
        help="Bind host (overrides HOST env).",
    )
    serve.add_argument(
        "--port",
        default=None,
        type=int,
        help="Bind port (overrides PORT env).",
    )
    _add_config_args(serve)

    search = sub.add_parser("search", help="Run one search and print JSON lines.")
    search.add_argument("keyword", help="Search keyword.")
    search.add_argument("--max-pages", type=int, default=None)
    search.add_argument(
        "--engine",
        action="append",
        default=[],
        dest="engines",
        help="Restrict to this engine id (repeatable).",
    )
    search.add_argument(
        "--no-ai",
        action="store_true",
        help="Skip content analysis.",
    )
    search.add_argument(
        "--require-keyword",
        action="store_true",
        default=None,
        help="Drop results whose title lacks the keyword.",
    )
    search.add_argument(
        "--progress",
        action="store_true",
        help="Also print progress events.",
    )
    _add_config_args(search)

    return parser.parse_args(argv)


def _load(args: argparse.Namespace, *, default_log_level: str | None = None) -> AppConfig:
    config_path = Path(args.config) if args.config else None
    dotenv_path = Path(args.dotenv) if args.dotenv else None

    cli_overrides: dict[str, Any] = {}
    log_level = args.log_level or default_log_level
    if log_level:
        cli_overrides["log_level"] = log_level
    if args.log_format:
        cli_overrides["log_format"] = args.log_format

    return load_config(
        config_path=config_path,
        dotenv_path=dotenv_path,
        cli_overrides=cli_overrides,
    )


async def run_search(config: AppConfig, args: argparse.Namespace) -> int:
    """One-shot search: print snapshots (and optionally events) to stdout."""
    async with build_services(config) as services:
        query = services.new_query(
            args.keyword,
            max_pages=args.max_pages,
            ai_filter=False if args.no_ai else None,
            require_keyword_in_title=args.require_keyword,
            engine_ids=args.engines,
        )
        run = services.orchestrator.start(query, services.engines)

        async def _print_events() -> None:
            async for event in run.events():
                if args.progress:
                    sys.stdout.write(progress_line(event))
                    sys.stdout.flush()

        printer = asyncio.create_task(_print_events())
        final = None
        async for snapshot in run.snapshots():
            final = snapshot
            if args.progress:
                sys.stdout.write(snapshot_line(snapshot))
                sys.stdout.flush()
        await printer

        if final is not None and not args.progress:
            sys.stdout.write(snapshot_line(final))
        return 0 if final is not None and final.results else 1


def start(argv: Iterable[str] | None = None) -> int:
    """Process entrypoint."""
    if argv is None:
        argv = sys.argv[1:]

    args = _parse_args(argv)

    if args.command == "search":
        # stdout carries the results; keep log output down unless asked
        config = _load(args, default_log_level="WARNING")
        configure_logging(config, stdout_logs=False)
        return asyncio.run(run_search(config, args))

    host = args.host or os.getenv("HOST", "0.0.0.0")
    port = int(args.port or os.getenv("PORT", "7980"))

    config = _load(args)
    log_config = configure_logging(config)

    uvicorn.run(
        create_app(config),
        host=host,
        port=port,
        log_config=log_config,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(start())
