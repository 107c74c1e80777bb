"""Tests for shellrelay.cli (typer app)."""

from __future__ import annotations

import logging
import os

import pytest
from typer.testing import CliRunner

from shellrelay import __version__
from shellrelay.cli import app, setup_logging
from shellrelay.config import ShellConfig, split_command

runner = CliRunner()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SHELLRELAY_COMMAND", raising=False)
    monkeypatch.delenv("SHELLRELAY_CWD", raising=False)


class TestVersion:
    def test_prints_version(self) -> None:
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert f"shellrelay v{__version__}" in result.output


class TestConsole:
    def test_spawn_failure_exits_nonzero(self) -> None:
        result = runner.invoke(
            app, ["console", "--command", "/nonexistent/interpreter"], input=""
        )
        assert result.exit_code == 1

    def test_no_args_shows_help(self) -> None:
        result = runner.invoke(app, [])
        assert "console" in result.output

    def test_command_option_is_split(self, monkeypatch: pytest.MonkeyPatch) -> None:
        seen: list[ShellConfig] = []

        async def _fake_run(config: ShellConfig) -> None:
            seen.append(config)

        monkeypatch.setattr("shellrelay.cli._run_console", _fake_run)
        result = runner.invoke(
            app, ["console", "--command", "/bin/sh -c 'read line'"], input=""
        )
        assert result.exit_code == 0
        expected = split_command("/bin/sh -c 'read line'")
        assert seen[0].command == expected
        if os.name != "nt":
            assert expected == ["/bin/sh", "-c", "read line"]


class TestSetupLogging:
    def test_verbose_sets_debug(self, monkeypatch: pytest.MonkeyPatch) -> None:
        captured: dict[str, object] = {}
        monkeypatch.setattr(
            logging, "basicConfig", lambda **kwargs: captured.update(kwargs)
        )
        setup_logging(verbose=True)
        assert captured["level"] == logging.DEBUG

    def test_default_is_warning(self, monkeypatch: pytest.MonkeyPatch) -> None:
        captured: dict[str, object] = {}
        monkeypatch.setattr(
            logging, "basicConfig", lambda **kwargs: captured.update(kwargs)
        )
        setup_logging()
        assert captured["level"] == logging.WARNING
