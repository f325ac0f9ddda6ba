"""Tests for the command-line entrypoint."""

from __future__ import annotations

import argparse
import json
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import httpx
import pytest

from magnetopt.domain.entities.search import RawResult
from magnetopt.infrastructure.composition import Services
from magnetopt.infrastructure.concurrency import ConcurrencyPool
from magnetopt.infrastructure.config import AppConfig
from magnetopt.infrastructure.metrics import MetricsCollector
from magnetopt.interfaces.cli import cli


def _ndjson(out: str) -> list[dict[str, Any]]:
    # structlog writes to stdout too when logging is not configured
    return [json.loads(line) for line in out.splitlines() if line.startswith('{"type"')]


class TestParseArgs:
    def test_search_options(self) -> None:
        args = cli._parse_args(
            [
                "search",
                "ubuntu iso",
                "--max-pages",
                "2",
                "--engine",
                "clmclm",
                "--engine",
                "mysite",
                "--no-ai",
                "--progress",
            ]
        )
        assert args.command == "search"
        assert args.keyword == "ubuntu iso"
        assert args.max_pages == 2
        assert args.engines == ["clmclm", "mysite"]
        assert args.no_ai is True
        assert args.require_keyword is None
        assert args.progress is True

    def test_serve_options(self) -> None:
        args = cli._parse_args(["serve", "--port", "9000", "--log-format", "json"])
        assert args.command == "serve"
        assert args.port == 9000
        assert args.host is None
        assert args.log_format == "json"

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            cli._parse_args([])


class TestLoad:
    def test_search_defaults_to_warning(self) -> None:
        args = cli._parse_args(["search", "x"])
        config = cli._load(args, default_log_level="WARNING")
        assert config.log_level == "WARNING"

    def test_explicit_level_wins(self) -> None:
        args = cli._parse_args(["search", "x", "--log-level", "DEBUG"])
        config = cli._load(args, default_log_level="WARNING")
        assert config.log_level == "DEBUG"


class TestStart:
    def test_search_dispatch(self, monkeypatch: pytest.MonkeyPatch) -> None:
        seen: dict[str, Any] = {}

        async def fake_run_search(config: AppConfig, args: argparse.Namespace) -> int:
            seen["keyword"] = args.keyword
            return 0

        def fake_configure(config: AppConfig, **kwargs: Any) -> dict[str, Any]:
            seen["logging"] = kwargs
            return {}

        monkeypatch.setattr(cli, "run_search", fake_run_search)
        monkeypatch.setattr(cli, "configure_logging", fake_configure)

        assert cli.start(["search", "ubuntu"]) == 0
        assert seen == {"keyword": "ubuntu", "logging": {"stdout_logs": False}}

    def test_serve_dispatch(self, monkeypatch: pytest.MonkeyPatch) -> None:
        calls: list[dict[str, Any]] = []
        monkeypatch.setattr(cli, "configure_logging", lambda config: {"version": 1})
        monkeypatch.setattr(
            cli.uvicorn, "run", lambda app, **kwargs: calls.append(kwargs)
        )
        monkeypatch.delenv("HOST", raising=False)

        assert cli.start(["serve", "--port", "8123"]) == 0
        assert calls == [
            {"host": "0.0.0.0", "port": 8123, "log_config": {"version": 1}}
        ]


class TestRunSearch:
    @pytest.fixture()
    def patched_services(
        self,
        monkeypatch: pytest.MonkeyPatch,
        make_orchestrator: Callable[..., Any],
        make_engine: Callable[..., Any],
        make_raw: Callable[..., RawResult],
    ) -> list[Any]:
        engines = [make_engine("clmclm", results=[make_raw(1, "Ubuntu ISO")])]

        @asynccontextmanager
        async def fake_build(config: AppConfig) -> AsyncIterator[Services]:
            yield Services(
                config=config,
                http_client=httpx.AsyncClient(),
                engines=engines,
                orchestrator=make_orchestrator(),
                pool=ConcurrencyPool(),
                metrics=MetricsCollector(),
            )

        monkeypatch.setattr(cli, "build_services", fake_build)
        return engines

    async def test_prints_final_snapshot(
        self, patched_services: list[Any], capsys: pytest.CaptureFixture[str]
    ) -> None:
        args = cli._parse_args(["search", "ubuntu"])
        code = await cli.run_search(AppConfig(), args)

        lines = _ndjson(capsys.readouterr().out)
        assert code == 0
        assert len(lines) == 1
        assert lines[0]["type"] == "snapshot"
        assert lines[0]["snapshot"]["final"] is True
        assert lines[0]["snapshot"]["results"][0]["title"] == "Ubuntu ISO"

    async def test_progress_mode_prints_events(
        self, patched_services: list[Any], capsys: pytest.CaptureFixture[str]
    ) -> None:
        args = cli._parse_args(["search", "ubuntu", "--progress"])
        await cli.run_search(AppConfig(), args)

        types = [line["type"] for line in _ndjson(capsys.readouterr().out)]
        assert "progress" in types
        assert types[-1] in {"progress", "snapshot"}

    async def test_no_results_exit_code(
        self, patched_services: list[Any], capsys: pytest.CaptureFixture[str]
    ) -> None:
        patched_services[0].results = []
        args = cli._parse_args(["search", "nothing"])
        assert await cli.run_search(AppConfig(), args) == 1
