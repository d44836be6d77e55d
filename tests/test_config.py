"""Tests for provider settings loading and validation."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from clibridge.config.models import ProviderSettings
from clibridge.config.parser import ConfigError, load_settings, settings_from_mapping
from clibridge.constants import DEFAULT_MAX_TURNS
from clibridge.errors import ClibridgeError


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ProviderSettings.model_fields:
        monkeypatch.delenv(f"CLIBRIDGE_{name.upper()}", raising=False)


class TestProviderSettings:
    def test_defaults(self) -> None:
        s = ProviderSettings()
        assert s.claude_path == "claude"
        assert s.max_turns == DEFAULT_MAX_TURNS
        assert s.enable_host_tools is True
        assert s.conversation_id == "default"
        assert s.model == "sonnet"
        assert s.working_directory is None
        assert s.user_id is None

    def test_camel_case_aliases(self) -> None:
        s = settings_from_mapping({
            "claudePath": "/opt/claude",
            "maxTurns": "7",
            "workingDirectory": "/work",
            "enableHostTools": "off",
            "conversationId": "c1",
            "userId": "u1",
        })
        assert s.claude_path == "/opt/claude"
        assert s.max_turns == 7
        assert s.working_directory == "/work"
        assert s.enable_host_tools is False
        assert s.conversation_id == "c1"
        assert s.user_id == "u1"

    @pytest.mark.parametrize("value", ["off", "false", "NO", "0", "disabled"])
    def test_host_tools_switch_off(self, value: str) -> None:
        assert settings_from_mapping({"enableHostTools": value}).enable_host_tools is False

    @pytest.mark.parametrize("value", ["on", "true", "yes"])
    def test_host_tools_switch_on(self, value: str) -> None:
        assert settings_from_mapping({"enableHostTools": value}).enable_host_tools is True

    def test_blank_values_fall_back(self) -> None:
        s = settings_from_mapping({
            "claudePath": "  ",
            "maxTurns": "",
            "model": "",
            "workingDirectory": "",
            "conversationId": None,
        })
        assert s.claude_path == "claude"
        assert s.max_turns == DEFAULT_MAX_TURNS
        assert s.model == "sonnet"
        assert s.working_directory is None
        assert s.conversation_id == "default"

    def test_invalid_turns(self) -> None:
        with pytest.raises(ConfigError, match="max_turns|maxTurns"):
            settings_from_mapping({"maxTurns": 0})
        with pytest.raises(ConfigError, match="validation failed"):
            settings_from_mapping({"maxTurns": "many"})

    def test_overrides_skip_none(self) -> None:
        s = settings_from_mapping({"model": "opus"}, model=None, max_turns=3)
        assert s.model == "opus"
        assert s.max_turns == 3

    def test_unknown_keys_ignored(self) -> None:
        assert settings_from_mapping({"temperature": 0.3}).model == "sonnet"


class TestLoadSettings:
    def test_no_file(self) -> None:
        assert load_settings() == ProviderSettings()

    def test_yaml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "clibridge.yaml"
        path.write_text("model: opus\nmaxTurns: 4\n")
        s = load_settings(path)
        assert s.model == "opus"
        assert s.max_turns == 4

    def test_empty_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "clibridge.yaml"
        path.write_text("")
        assert load_settings(path) == ProviderSettings()

    def test_env_overrides_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "clibridge.yaml"
        path.write_text("model: opus\n")
        monkeypatch.setenv("CLIBRIDGE_MODEL", "haiku")
        monkeypatch.setenv("CLIBRIDGE_MAX_TURNS", "9")
        s = load_settings(path)
        assert s.model == "haiku"
        assert s.max_turns == 9

    def test_dotenv_beside_file(self, tmp_path: Path) -> None:
        path = tmp_path / "clibridge.yaml"
        path.write_text("{}\n")
        (tmp_path / ".env").write_text("CLIBRIDGE_USER_ID=from-dotenv\n")
        try:
            assert load_settings(path).user_id == "from-dotenv"
        finally:
            os.environ.pop("CLIBRIDGE_USER_ID", None)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path / "missing.yaml")

    def test_bad_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "clibridge.yaml"
        path.write_text("model: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_settings(path)

    def test_non_mapping_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "clibridge.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="Expected a YAML mapping"):
            load_settings(path)

    def test_config_error_is_a_clibridge_error(self, tmp_path: Path) -> None:
        with pytest.raises(ClibridgeError):
            load_settings(tmp_path / "missing.yaml")
