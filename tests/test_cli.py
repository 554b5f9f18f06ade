"""Tests for the dingtalk-bridge CLI."""

import json

import pytest
from click.testing import CliRunner

from dingtalk_bridge.cli.main import main

ENV_VARS = (
    "DINGTALK_APP_KEY", "DINGTALK_APP_SECRET", "DINGTALK_ROBOT_CODE", "DM_POLICY", "GROUP_POLICY",
    "ALLOW_FROM", "GROUP_ALLOW_FROM", "GATEWAY_URL", "GATEWAY_TOKEN", "GATEWAY_PASSWORD", "SEND_MODE",
)


@pytest.fixture
def runner(monkeypatch, tmp_path):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    # keep load_dotenv away from any developer .env
    monkeypatch.chdir(tmp_path)
    return CliRunner()


def write_config(tmp_path, **values) -> str:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(values))
    return str(path)


def test_help_lists_commands(runner):
    result = runner.invoke(main, ["--help"])
    assert result.exit_code == 0
    for command in ("run", "probe", "send", "config"):
        assert command in result.output


def test_config_show_masks_secrets(runner, tmp_path):
    path = write_config(tmp_path, appKey="my-key", appSecret="my-secret", gatewayToken="gw-token")
    result = runner.invoke(main, ["config", "show", "-c", path])
    assert result.exit_code == 0
    assert "my-key" in result.output
    assert "my-secret" not in result.output
    assert "gw-token" not in result.output


def test_invalid_config_exits(runner, tmp_path):
    path = write_config(tmp_path, dmPolicy="everyone")
    result = runner.invoke(main, ["config", "show", "-c", path])
    assert result.exit_code == 1


def test_probe_without_credentials_fails(runner, tmp_path):
    path = write_config(tmp_path)
    result = runner.invoke(main, ["probe", "-c", path, "--json"])
    assert result.exit_code == 1
    assert '"ok": false' in result.output
