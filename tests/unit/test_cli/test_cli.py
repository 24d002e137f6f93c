"""Tests for the hostterm command-line interface."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import patch

import pytest

from hostterm.cli import main, parse_args


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    logger = logging.getLogger("hostterm")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


class TestParseArgs:
    def test_serve_overrides(self) -> None:
        args = parse_args(["-c", "x.yaml", "serve", "--host", "127.0.0.1", "--port", "9000"])
        assert args.command == "serve"
        assert args.config == Path("x.yaml")
        assert args.host == "127.0.0.1"
        assert args.port == 9000

    def test_detect(self) -> None:
        args = parse_args(["-v", "detect"])
        assert args.command == "detect"
        assert args.verbose is True

    def test_no_command_prints_help(self) -> None:
        with pytest.raises(SystemExit) as exc:
            main([])
        assert exc.value.code == 0


class TestCommands:
    @pytest.fixture
    def config_file(self, tmp_path: Path) -> Path:
        path = tmp_path / "hostterm.yaml"
        path.write_text(
            "server:\n"
            "  port: 9100\n"
            "terminal:\n"
            "  use_simple_mode: true\n"
            f"  nsenter_path: {tmp_path / 'nsenter'}\n"
            "  shell_paths: /bin/sh\n"
        )
        return path

    def test_detect_output(self, config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        main(["-c", str(config_file), "detect"])
        out = capsys.readouterr().out
        assert "nsenter:" in out
        assert "not usable" in out
        assert "Simple mode: forced" in out
        assert "Mode:        simple" in out
        assert "Command:     /bin/sh -i" in out

    def test_serve_runs_uvicorn(self, config_file: Path) -> None:
        with patch("uvicorn.run") as run:
            main(["-c", str(config_file), "serve", "--port", "9200"])
        run.assert_called_once()
        _, kwargs = run.call_args
        assert kwargs["port"] == 9200
        assert kwargs["host"] == "0.0.0.0"

    def test_serve_uses_yaml_settings(self, config_file: Path) -> None:
        with patch("uvicorn.run") as run:
            main(["-c", str(config_file), "serve"])
        app = run.call_args.args[0]
        assert run.call_args.kwargs["port"] == 9100
        assert app.state.settings.terminal.use_simple_mode is True
        assert logging.getLogger("hostterm").handlers
