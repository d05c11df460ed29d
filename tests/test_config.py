"""Tests for settings, credentials and YAML loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from discord_ipc import config as config_module
from discord_ipc.config import (
    ConfigLoadError,
    Credentials,
    IpcConfig,
    default_base_path,
    load_config,
)


class TestIpcConfig:
    """Test defaults, validation and endpoint naming."""

    def test_defaults(self):
        config = IpcConfig(base_path="/run/user/1000/discord-ipc-")
        assert config.max_discovery_attempts == 10
        assert config.idle_timeout == 60.0
        assert config.scopes == ("rpc",)
        assert config.api_base == "https://discord.com/api"

    def test_endpoint_appends_attempt(self):
        config = IpcConfig(base_path="/tmp/discord-ipc-")
        assert config.endpoint(0) == "/tmp/discord-ipc-0"
        assert config.endpoint(9) == "/tmp/discord-ipc-9"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"max_discovery_attempts": 0},
            {"idle_timeout": 0},
            {"ping_timeout": -1},
            {"close_timeout": 0},
            {"base_path": ""},
        ],
    )
    def test_invalid_values(self, overrides):
        with pytest.raises(ValueError):
            IpcConfig(**{"base_path": "/tmp/discord-ipc-", **overrides})

    def test_from_mapping_rejects_unknown_keys(self):
        with pytest.raises(ConfigLoadError, match="idle_timout"):
            IpcConfig.from_mapping({"idle_timout": 5})

    def test_from_mapping_wraps_bad_values(self):
        with pytest.raises(ConfigLoadError, match="Invalid ipc options"):
            IpcConfig.from_mapping({"base_path": "/x/", "ping_timeout": 0})


class TestDefaultBasePath:
    """Test where the desktop app is looked for."""

    def test_prefers_xdg_runtime_dir(self, monkeypatch):
        monkeypatch.setattr(config_module.sys, "platform", "linux")
        monkeypatch.setenv("XDG_RUNTIME_DIR", "/run/user/1000/")
        monkeypatch.setenv("TMPDIR", "/var/tmp")
        assert default_base_path() == "/run/user/1000/discord-ipc-"

    def test_falls_back_through_temp_vars(self, monkeypatch):
        monkeypatch.setattr(config_module.sys, "platform", "linux")
        for name in ("XDG_RUNTIME_DIR", "TMPDIR", "TMP"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("TEMP", "/scratch")
        assert default_base_path() == "/scratch/discord-ipc-"

    def test_defaults_to_tmp(self, monkeypatch):
        monkeypatch.setattr(config_module.sys, "platform", "darwin")
        for name in ("XDG_RUNTIME_DIR", "TMPDIR", "TMP", "TEMP"):
            monkeypatch.delenv(name, raising=False)
        assert default_base_path() == "/tmp/discord-ipc-"

    def test_windows_named_pipe(self, monkeypatch):
        monkeypatch.setattr(config_module.sys, "platform", "win32")
        assert default_base_path() == "\\\\?\\pipe\\discord-ipc-"


class TestLoadConfig:
    """Test YAML loading."""

    def test_load_full_file(self, tmp_path: Path):
        path = tmp_path / "discord.yaml"
        path.write_text(
            'client_id: 123456789\n'
            'client_secret: "s3cret"\n'
            'redirect_uri: "http://localhost"\n'
            'ipc:\n'
            '  base_path: "/tmp/discord-ipc-"\n'
            '  idle_timeout: 30\n'
            '  scopes: [rpc, rpc.voice.read]\n'
        )

        config, credentials = load_config(path)

        assert credentials == Credentials(
            client_id="123456789",
            client_secret="s3cret",
            redirect_uri="http://localhost",
        )
        assert config.idle_timeout == 30
        assert config.scopes == ("rpc", "rpc.voice.read")

    def test_ipc_section_is_optional(self, tmp_path: Path):
        path = tmp_path / "discord.yaml"
        path.write_text('client_id: "42"\naccess_token: "cached"\n')

        config, credentials = load_config(path)

        assert credentials.access_token == "cached"
        assert config.max_discovery_attempts == 10

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigLoadError, match="File not found"):
            load_config(tmp_path / "absent.yaml")

    def test_missing_client_id(self, tmp_path: Path):
        path = tmp_path / "discord.yaml"
        path.write_text('client_secret: "s"\n')
        with pytest.raises(ConfigLoadError, match="client_id"):
            load_config(path)

    def test_top_level_must_be_mapping(self, tmp_path: Path):
        path = tmp_path / "discord.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigLoadError, match="mapping"):
            load_config(path)

    def test_token_hidden_from_repr(self):
        assert "tok" not in repr(Credentials(client_id="1", access_token="tok"))
