"""Tests for the calculate and cache-info commands and the forkwatch router."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

from forkwatch.__main__ import main as forkwatch_main
from packages.augur.cache import EventCacheStore, empty_cache
from packages.augur.config import RunMode
from packages.augur.risk import build_error_result
from tests._fake_ledger import created
from tools.cli.cache_info import main as cache_info_main
from tools.cli.cache_info import summarize_cache
from tools.cli.fork_risk import main as fork_risk_main


def _write_cache(path: Path) -> None:
    cache = empty_cache()
    for event in (created(1, 11, 95_000, 1), created(2, 12, 96_000, 2)):
        cache.events[event.kind].append(event)
    cache.last_queried_block = 100_000
    EventCacheStore(path).save(cache)


class TestCalculateCommand:
    def test_flags_override_settings(self, tmp_path):
        with patch(
            "tools.cli.fork_risk.run_fork_risk",
            return_value=(0, build_error_result("stub")),
        ) as mock_run:
            exit_code = fork_risk_main(
                [
                    "--full-rebuild",
                    "--rpc-url", "https://a.example",
                    "--rpc-url", "https://b.example",
                    "--cache-path", str(tmp_path / "c.json"),
                    "--output", str(tmp_path / "o.json"),
                ]
            )

        assert exit_code == 0
        settings = mock_run.call_args[0][0]
        assert settings.rpc_endpoints == ("https://a.example", "https://b.example")
        assert settings.mode is RunMode.FULL_REBUILD
        assert settings.cache_path == tmp_path / "c.json"
        assert settings.output_path == tmp_path / "o.json"

    def test_environment_mode_used_without_flag(self, monkeypatch):
        monkeypatch.setenv("FORK_RISK_MODE", "full-rebuild")
        with patch(
            "tools.cli.fork_risk.run_fork_risk",
            return_value=(1, build_error_result("stub")),
        ) as mock_run:
            assert fork_risk_main([]) == 1
        assert mock_run.call_args[0][0].mode is RunMode.FULL_REBUILD

    def test_bad_config_publishes_error_document(self, tmp_path):
        output = tmp_path / "o.json"

        exit_code = fork_risk_main(["--config", str(tmp_path / "missing.yaml"), "--output", str(output)])

        assert exit_code == 1
        doc = json.loads(output.read_text(encoding="utf-8"))
        assert doc["riskLevel"] == "unknown"
        assert "config file not found" in doc["error"]

    def test_bad_yaml_value_publishes_error_document(self, tmp_path):
        config_file = tmp_path / "forkwatch.yaml"
        config_file.write_text("rpc_timeout_seconds: ten\n", encoding="utf-8")
        output = tmp_path / "o.json"

        exit_code = fork_risk_main(["--config", str(config_file), "--output", str(output)])

        assert exit_code == 1
        doc = json.loads(output.read_text(encoding="utf-8"))
        assert doc["riskLevel"] == "unknown"
        assert "rpc_timeout_seconds" in doc["error"]


class TestCacheInfoCommand:
    def test_missing_cache(self, tmp_path):
        summary = summarize_cache(tmp_path / "none.json")
        assert summary["exists"] is False
        assert "valid" not in summary

    def test_valid_cache_summary(self, tmp_path, capsys):
        path = tmp_path / "cache.json"
        _write_cache(path)

        assert cache_info_main(["--cache-path", str(path)]) == 0

        summary = json.loads(capsys.readouterr().out)
        assert summary["valid"] is True
        assert summary["counts"] == {"created": 2, "contributions": 0, "completed": 0}
        assert summary["totalEventsTracked"] == 2
        assert summary["eventBlockRange"] == [95_000, 96_000]
        assert summary["lastQueriedBlock"] == 100_000

    def test_invalid_cache_returns_nonzero(self, tmp_path, capsys):
        path = tmp_path / "cache.json"
        path.write_text(json.dumps({"version": "0.1"}), encoding="utf-8")

        assert cache_info_main(["--cache-path", str(path)]) == 1
        summary = json.loads(capsys.readouterr().out)
        assert "version mismatch" in summary["reason"]


class TestRouter:
    def test_no_args_prints_usage(self, capsys):
        assert forkwatch_main([]) == 1
        assert "Usage: forkwatch" in capsys.readouterr().out

    def test_help(self, capsys):
        assert forkwatch_main(["--help"]) == 0
        assert "calculate" in capsys.readouterr().out

    def test_version(self, capsys):
        assert forkwatch_main(["--version"]) == 0
        assert capsys.readouterr().out.startswith("forkwatch ")

    def test_unknown_command(self, capsys):
        assert forkwatch_main(["explode"]) == 1
        assert "Unknown command" in capsys.readouterr().err

    def test_routes_cache_info(self, tmp_path):
        path = tmp_path / "cache.json"
        _write_cache(path)
        assert forkwatch_main(["cache-info", "--cache-path", str(path)]) == 0

    def test_routes_calculate(self):
        with patch("forkwatch.__main__.fork_risk_main", return_value=0) as mock_calc:
            assert forkwatch_main(["calculate", "--full-rebuild"]) == 0
        mock_calc.assert_called_once_with(["--full-rebuild"])
