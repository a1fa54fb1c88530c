import json
import tempfile
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from disko_install import cli
from disko_install.config.models import Settings
from disko_install.utils.exceptions import ConfigurationError, DeactivationError

from conftest import MockCompletedProcess

SYSTEM = "/nix/store/aaa-nixos-system-host"
DISKO = "/nix/store/bbb-disko"

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    root = tmp_path / "tmp"
    root.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(root))
    monkeypatch.setattr(Settings, "locate", classmethod(lambda cls, environ=None: cls()))
    return root


# ----------------------------------------------------------------------
# --- disko-install ---
# ----------------------------------------------------------------------

@pytest.mark.parametrize("argv, message", [
    ([], "No arguments"),
    (["--dry-run"], "Please specify a flake"),
    (["--flake", "/etc/nixos"], "nixosConfigurations"),
    (["-f", ".#a", "--bogus"], "Unknown option: --bogus"),
    (["-f", ".#a", "--disk", "main"], "requires two arguments"),
    (["-f", ".#a", "--option"], "requires two arguments"),
    (["-f", ".#a", "--mode"], "requires an argument"),
    (["-f", ".#a", "--mode", "erase"], "Valid modes are: format, mount"),
])
@patch('subprocess.run')
def test_usage_errors_exit_1_without_running_anything(mock_run, argv, message, capsys, isolated_environment):
    assert cli.run(argv) == 1

    mock_run.assert_not_called()
    assert message in capsys.readouterr().err
    assert list(isolated_environment.iterdir()) == []


@pytest.mark.parametrize("flag", ["-h", "--help"])
def test_help_exits_0(flag, capsys):
    assert cli.run([flag]) == 0
    assert "Usage: disko-install" in capsys.readouterr().out


def test_configuration_error_exits_1(monkeypatch, capsys):
    def broken(cls, environ=None):
        raise ConfigurationError("Invalid TOML format in /etc/disko-install.toml")
    monkeypatch.setattr(Settings, "locate", classmethod(broken))

    assert cli.run(["-f", ".#a"]) == 1
    assert "Invalid TOML" in capsys.readouterr().err


@patch('subprocess.run')
def test_unusable_log_directory_exits_1(mock_run, tmp_path, monkeypatch, capsys):
    not_a_directory = tmp_path / "log"
    not_a_directory.write_text("")
    monkeypatch.setattr(Settings, "locate", classmethod(lambda cls, environ=None: cls(log_directory=str(not_a_directory))))

    assert cli.run(["-f", "github:me/dots#host"]) == 1

    mock_run.assert_not_called()
    assert "Cannot open log file" in capsys.readouterr().err


@patch('subprocess.run')
def test_dry_run_exits_0_after_build_only(mock_run, isolated_environment):
    mock_run.return_value = MockCompletedProcess(stdout=f"{SYSTEM}\n{DISKO}\n")

    assert cli.run(["-f", "github:me/dots#host", "--disk", "main", "/dev/vda", "--dry-run"]) == 0

    mock_run.assert_called_once()
    assert mock_run.call_args.args[0][0] == "nix-build"
    assert list(isolated_environment.iterdir()) == []


@patch('subprocess.run')
def test_installer_status_is_exit_status(mock_run):
    mock_run.side_effect = [
        MockCompletedProcess(stdout=f"{SYSTEM}\n{DISKO}\n"),
        MockCompletedProcess(),
        MockCompletedProcess(returncode=5),
    ]

    assert cli.run(["-f", "github:me/dots#host"]) == 5


@patch('subprocess.run')
def test_build_failure_exit_status(mock_run, isolated_environment):
    mock_run.return_value = MockCompletedProcess(returncode=7)

    assert cli.run(["-f", "github:me/dots#host", "--show-trace"]) == 7
    assert "--show-trace" in mock_run.call_args.args[0]
    assert list(isolated_environment.iterdir()) == []


@patch('subprocess.run')
def test_unexpected_build_output_exits_1(mock_run):
    mock_run.return_value = MockCompletedProcess(stdout="")
    assert cli.run(["-f", "github:me/dots#host"]) == 1


@patch('subprocess.run', side_effect=FileNotFoundError())
def test_missing_build_tool_exits_127(mock_run):
    assert cli.run(["-f", "github:me/dots#host"]) == 127


# ----------------------------------------------------------------------
# --- disk-deactivate ---
# ----------------------------------------------------------------------

@patch.object(cli, "deactivate_disk", return_value=0)
def test_deactivate_success(mock_deactivate):
    result = runner.invoke(cli.deactivate_app, ["/dev/vda"])

    assert result.exit_code == 0
    assert mock_deactivate.call_args.args[0] == "/dev/vda"


@patch.object(cli, "deactivate_disk", return_value=2)
def test_deactivate_with_failed_steps(mock_deactivate):
    result = runner.invoke(cli.deactivate_app, ["/dev/vda"])
    assert result.exit_code == 1


@patch.object(cli, "deactivate_disk", side_effect=DeactivationError("Unknown device type 'rom' for /dev/sr0"))
def test_deactivate_unknown_topology(mock_deactivate):
    result = runner.invoke(cli.deactivate_app, ["/dev/sr0"])
    assert result.exit_code == 1


def test_deactivate_requires_disk_argument():
    result = runner.invoke(cli.deactivate_app, [])
    assert result.exit_code != 0


@patch('subprocess.run')
def test_deactivate_reads_lsblk(mock_run):
    mock_run.return_value = MockCompletedProcess(stdout=json.dumps({"blockdevices": []}))

    result = runner.invoke(cli.deactivate_app, ["/dev/vdz"])

    assert result.exit_code == 0
    argv = mock_run.call_args.args[0]
    assert argv[0] == "lsblk"
    assert argv[-1] == "/dev/vdz"


@patch('subprocess.run')
def test_deactivate_lsblk_failure(mock_run):
    mock_run.return_value = MockCompletedProcess(returncode=32, stderr="lsblk: /dev/vdz: not a block device")
    result = runner.invoke(cli.deactivate_app, ["/dev/vdz"])
    assert result.exit_code == 1


@patch('subprocess.run')
def test_deactivate_unusable_log_directory(mock_run, tmp_path, monkeypatch):
    not_a_directory = tmp_path / "log"
    not_a_directory.write_text("")
    monkeypatch.setattr(Settings, "locate", classmethod(lambda cls, environ=None: cls(log_directory=str(not_a_directory))))

    result = runner.invoke(cli.deactivate_app, ["/dev/vda"])

    assert result.exit_code == 1
    mock_run.assert_not_called()
