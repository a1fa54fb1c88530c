from pathlib import Path

import pytest

from disko_install.config import models
from disko_install.config.models import Settings, CONFIG_ENV_VAR
from disko_install.utils.exceptions import ConfigurationError


def test_defaults():
    settings = Settings()
    assert settings.build_command == "nix-build"
    assert settings.installer_command == "nixos-install"
    assert settings.installer_args == ["--no-channel-copy", "--no-root-password"]
    assert settings.mountpoint_mode == 0o755
    assert settings.build_expression.endswith("install-cli.nix")
    assert settings.log_directory is None


def test_load_config_from_file(tmp_path):
    config_file = tmp_path / "disko-install.toml"
    config_file.write_text(
        'build_expression = "/opt/disko/install-cli.nix"\n'
        'installer_args = ["--no-root-password"]\n'
        'mountpoint_mode = 0o750\n'
        'command_timeout = 3600\n'
        'log_directory = "/var/log/disko-install"\n',
        encoding="utf-8",
    )

    settings = Settings.load_config_from_file(config_file)

    assert settings.build_expression == "/opt/disko/install-cli.nix"
    assert settings.installer_args == ["--no-root-password"]
    assert settings.mountpoint_mode == 0o750
    assert settings.command_timeout == 3600
    assert settings.log_directory == "/var/log/disko-install"


def test_invalid_toml(tmp_path):
    config_file = tmp_path / "broken.toml"
    config_file.write_text("build_command = \n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="Invalid TOML"):
        Settings.load_config_from_file(config_file)


def test_unknown_key_is_rejected(tmp_path):
    config_file = tmp_path / "typo.toml"
    config_file.write_text('instaler_command = "x"\n', encoding="utf-8")

    with pytest.raises(ConfigurationError, match="Invalid settings"):
        Settings.load_config_from_file(config_file)


def test_invalid_mountpoint_mode(tmp_path):
    config_file = tmp_path / "mode.toml"
    config_file.write_text("mountpoint_mode = 99999\n", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        Settings.load_config_from_file(config_file)


def test_missing_file():
    with pytest.raises(ConfigurationError, match="Error reading"):
        Settings.load_config_from_file(Path("/nonexistent/disko-install.toml"))


def test_locate_uses_environment(tmp_path):
    config_file = tmp_path / "env.toml"
    config_file.write_text('build_command = "/run/current-system/sw/bin/nix-build"\n', encoding="utf-8")

    settings = Settings.locate({CONFIG_ENV_VAR: str(config_file)})

    assert settings.build_command == "/run/current-system/sw/bin/nix-build"


def test_locate_falls_back_to_defaults(tmp_path, monkeypatch):
    monkeypatch.setattr(models, "DEFAULT_CONFIG_PATH", tmp_path / "absent.toml")
    assert Settings.locate({}) == Settings()


def test_locate_reads_default_path(tmp_path, monkeypatch):
    default_file = tmp_path / "disko-install.toml"
    default_file.write_text('log_file_name = "run.log"\n', encoding="utf-8")
    monkeypatch.setattr(models, "DEFAULT_CONFIG_PATH", default_file)

    assert Settings.locate({}).log_file_name == "run.log"
