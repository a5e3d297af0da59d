import json
import logging
import sys
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

sys.path.insert(0, str(Path(__file__).parent.parent))

from cdpfleet import __version__
from cdpfleet.browser.health import EndpointStatus
from cdpfleet.cli import EXIT_CONFIG_ERROR, artifact_stem, main, resolve_agents

from fakes import PNG_BYTES, FakeProvider


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logging.getLogger().handlers.clear()


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def provider():
    return FakeProvider(unreachable={"http://localhost:9999"})


@pytest.fixture
def patched_provider(provider):
    with patch("cdpfleet.browser.provider.PlaywrightProvider", return_value=provider):
        yield provider


class TestResolveAgents:
    def test_default_fleet(self):
        agents = resolve_agents(None, [], [], None)
        assert [a.name for a in agents] == ["Agent-1", "Agent-2", "Agent-3"]

    def test_ports_use_url(self):
        agents = resolve_agents(None, [], [9222, 9223], "https://httpbin.org")
        assert [a.target_url for a in agents] == ["https://httpbin.org", "https://httpbin.org"]

    def test_file_then_options(self, tmp_path):
        path = tmp_path / "agents.json"
        path.write_text(json.dumps({"agents": [{"name": "F", "endpoint": ":9230", "url": "https://example.com"}]}))
        agents = resolve_agents(str(path), ["O=:9231=https://x.com"], [], None)
        assert [a.name for a in agents] == ["F", "O"]


class TestArtifactStem:
    def test_plain_name_unchanged(self):
        assert artifact_stem("Agent-1") == "Agent-1"

    def test_separators_replaced(self):
        assert artifact_stem("team/a") == "team_a"
        assert artifact_stem("..\\x") == "_x"

    def test_dots_only(self):
        assert artifact_stem("..") == "agent"


class TestRunCommand:
    def test_json_report(self, runner, patched_provider):
        result = runner.invoke(main, [
            "run", "--json",
            "--agent", "A=:9222=https://example.com",
            "--agent", "B=:9999=https://x.com",
        ])
        assert result.exit_code == 0, result.output
        report = json.loads(result.stdout)
        assert report["summary"]["success"] == 1
        assert report["summary"]["failure"] == 1
        assert [o["agent"] for o in report["outcomes"]] == ["A", "B"]
        assert report["outcomes"][0]["payload"]["title"] == "Example Domain"
        assert report["outcomes"][1]["error"] == "connection refused"

    def test_partial_failure_exits_zero(self, runner, patched_provider):
        result = runner.invoke(main, [
            "run",
            "--agent", "A=:9222=https://example.com",
            "--agent", "B=:9999=https://x.com",
        ])
        assert result.exit_code == 0, result.output
        assert "Results" in result.output
        assert "1 succeeded" in result.output
        assert "1 failed" in result.output
        assert "Total time" in result.output

    def test_duplicate_names_exit_with_config_error(self, runner, patched_provider):
        result = runner.invoke(main, [
            "run",
            "--agent", "A=:9222=https://example.com",
            "--agent", "A=:9223=https://example.com",
        ])
        assert result.exit_code == EXIT_CONFIG_ERROR
        assert patched_provider.connect_calls == []

    def test_empty_agents_file_exits_with_config_error(self, runner, patched_provider, tmp_path):
        path = tmp_path / "agents.json"
        path.write_text(json.dumps({"agents": []}))
        result = runner.invoke(main, ["run", "--config", str(path)])
        assert result.exit_code == EXIT_CONFIG_ERROR
        assert patched_provider.connect_calls == []

    def test_bad_agent_option(self, runner, patched_provider):
        result = runner.invoke(main, ["run", "--agent", "nonsense"])
        assert result.exit_code == EXIT_CONFIG_ERROR

    def test_artifact_dir_saves_screenshots(self, runner, patched_provider, tmp_path):
        result = runner.invoke(main, [
            "run",
            "--agent", "A=:9222=https://example.com",
            "--artifact-dir", str(tmp_path),
        ])
        assert result.exit_code == 0, result.output
        assert (tmp_path / "A.jpg").read_bytes() == PNG_BYTES

    def test_artifact_names_stay_inside_artifact_dir(self, runner, patched_provider, tmp_path):
        config = tmp_path / "agents.json"
        config.write_text(json.dumps([
            {"name": "team/a", "endpoint": ":9222", "url": "https://example.com"},
            {"name": "../x", "endpoint": ":9223", "url": "https://example.com"},
        ]))
        out = tmp_path / "out"
        result = runner.invoke(main, ["run", "--config", str(config), "--artifact-dir", str(out)])
        assert result.exit_code == 0, result.output
        assert "Results" in result.output
        assert sorted(p.name for p in out.iterdir()) == ["_x.jpg", "team_a.jpg"]
        assert not (tmp_path / "x.jpg").exists()

    def test_ports(self, runner, patched_provider):
        result = runner.invoke(main, ["run", "--json", "--port", "9222", "--port", "9223"])
        assert result.exit_code == 0, result.output
        assert patched_provider.connect_calls == ["http://localhost:9222", "http://localhost:9223"]


class TestProbeCommand:
    def test_probe_success(self, runner, patched_provider, tmp_path):
        output = tmp_path / "example.png"
        result = runner.invoke(main, ["probe", "--endpoint", ":9222", "--output", str(output)])
        assert result.exit_code == 0, result.output
        assert "Connected successfully" in result.output
        assert "Example Domain" in result.output
        assert output.read_bytes() == PNG_BYTES
        assert patched_provider.close_count == 1
        assert patched_provider.stop_calls == 1

    def test_probe_failure_shows_troubleshooting(self, runner, patched_provider, tmp_path):
        result = runner.invoke(main, ["probe", "--endpoint", ":9999", "--output", str(tmp_path / "x.png")])
        assert result.exit_code == 1
        assert "connection refused" in result.output
        assert "Troubleshooting" in result.output

    def test_probe_uses_cdp_url(self, runner, patched_provider, tmp_path):
        result = runner.invoke(
            main,
            ["probe", "--output", str(tmp_path / "x.png")],
            env={"CDP_URL": "http://localhost:9333"},
        )
        assert result.exit_code == 0, result.output
        assert patched_provider.connect_calls == ["http://localhost:9333"]

    @pytest.mark.parametrize("value", ["0", "-1"])
    def test_probe_rejects_non_positive_timeout(self, runner, patched_provider, tmp_path, value):
        result = runner.invoke(main, ["probe", "--timeout", value, "--output", str(tmp_path / "x.png")])
        assert result.exit_code == EXIT_CONFIG_ERROR
        assert patched_provider.connect_calls == []

    def test_probe_survives_stop_error(self, runner, patched_provider, tmp_path):
        patched_provider.stop_error = RuntimeError("driver already gone")
        result = runner.invoke(main, ["probe", "--endpoint", ":9222", "--output", str(tmp_path / "x.png")])
        assert result.exit_code == 0, result.output
        assert "Connected successfully" in result.output


class TestCheckCommand:
    def test_all_reachable(self, runner):
        statuses = [EndpointStatus(endpoint=":9222", reachable=True, browser="Chrome/131")]
        with patch("cdpfleet.browser.health.check_endpoints", AsyncMock(return_value=statuses)):
            result = runner.invoke(main, ["check", ":9222", "--json"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)[0]["browser"] == "Chrome/131"

    def test_unreachable_exits_one(self, runner):
        statuses = [
            EndpointStatus(endpoint=":9222", reachable=True),
            EndpointStatus(endpoint=":9999", reachable=False, error="Connection refused"),
        ]
        with patch("cdpfleet.browser.health.check_endpoints", AsyncMock(return_value=statuses)):
            result = runner.invoke(main, ["check", ":9222", ":9999"])
        assert result.exit_code == 1

    def test_invalid_endpoint(self, runner):
        result = runner.invoke(main, ["check", "not an endpoint"])
        assert result.exit_code == EXIT_CONFIG_ERROR


class TestVersionCommand:
    def test_version(self, runner):
        result = runner.invoke(main, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output
