"""Tests for the dynabatch CLI."""

import json

import pytest
from dynabatch.cli.main import cli
from dynabatch.config import get_config, reset_config
from dynabatch.logging import setup_logging
from typer.testing import CliRunner

runner = CliRunner()


@pytest.fixture(autouse=True)
def _restore_logging():
    """Re-attach log handlers to the real stderr after --config reconfigures them."""
    yield
    reset_config()
    setup_logging()


class TestCLIStatus:
    def test_status_runs(self):
        result = runner.invoke(cli, ["status"])
        assert result.exit_code == 0
        assert "Scheduler Configuration" in result.output
        assert "Backend Configuration" in result.output

    def test_status_reflects_yaml_config(self, tmp_path):
        path = tmp_path / "dynabatch.yaml"
        path.write_text("scheduler:\n  max_batch_size: 64\n  preferred_batch_size: 48\n")
        result = runner.invoke(cli, ["--config", str(path), "status"])
        assert result.exit_code == 0
        assert "64" in result.output
        assert get_config().scheduler.preferred_batch_size == 48

    def test_bad_config_file(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("scheduler:\n  max_batch_size: 0\n")
        result = runner.invoke(cli, ["--config", str(path), "status"])
        assert result.exit_code == 1
        assert "Configuration error" in result.output


class TestCLIValidate:
    def test_validate_passes(self):
        result = runner.invoke(cli, ["validate"])
        assert result.exit_code == 0
        assert "All validation checks passed" in result.output

    def test_validate_fails_for_http_without_url(self, monkeypatch):
        monkeypatch.setenv("DYNABATCH_BACKEND_KIND", "http")
        result = runner.invoke(cli, ["validate"])
        assert result.exit_code == 1
        assert "DYNABATCH_BACKEND_URL" in result.output


class TestCLIPlan:
    def test_plan_json(self):
        result = runner.invoke(
            cli,
            ["plan", "-n", "10", "--max-batch", "4", "--preferred", "4", "--delay-ms", "50", "--json"],
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["batch_sizes"] == [4, 4, 2]
        assert data["max_queue_delay_ms"] == 50

    def test_plan_max_batch_alone_clamps_preferred(self):
        result = runner.invoke(cli, ["plan", "-n", "5", "--max-batch", "2", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["preferred_batch_size"] == 2
        assert data["batch_sizes"] == [2, 2, 1]

    def test_plan_table(self):
        result = runner.invoke(cli, ["plan", "-n", "3"])
        assert result.exit_code == 0
        assert "Planned Batches" in result.output

    def test_plan_invalid_policy(self):
        result = runner.invoke(cli, ["plan", "--max-batch", "2", "--preferred", "5"])
        assert result.exit_code == 1


class TestCLISimulate:
    def test_simulate_json(self):
        result = runner.invoke(
            cli,
            [
                "simulate", "-n", "20", "-p", "2",
                "--max-batch", "4", "--preferred", "4", "--delay-ms", "5",
                "--latency-ms", "1", "--json",
            ],
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["accepted"] + data["rejected"] == 20
        assert data["completed"] + data["failed"] == data["accepted"]
        assert sum(data["batch_sizes"]) == data["accepted"]
        assert max(data["batch_sizes"]) <= 4

    def test_simulate_with_failures(self):
        result = runner.invoke(
            cli,
            ["simulate", "-n", "16", "--failure-rate", "1.0", "--latency-ms", "0", "--json"],
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["completed"] == 0
        assert data["failed"] == data["accepted"] == 16

    def test_simulate_export(self, tmp_path):
        path = tmp_path / "metrics.json"
        result = runner.invoke(
            cli, ["simulate", "-n", "8", "--latency-ms", "0", "--export", str(path)]
        )
        assert result.exit_code == 0
        assert "Simulation Results" in result.output
        assert json.loads(path.read_text())["counters"]["requests.submitted"] == 8

    def test_simulate_rejects_zero_requests(self):
        result = runner.invoke(cli, ["simulate", "-n", "0"])
        assert result.exit_code == 1


class TestCLIInfo:
    def test_info(self):
        result = runner.invoke(cli, ["info"])
        assert result.exit_code == 0
        assert "Available Components" in result.output
        assert "HTTP Backend" in result.output
