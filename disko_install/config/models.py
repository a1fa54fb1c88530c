# disko_install/config/models.py

import os
import sys
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import tomlkit
from tomlkit.exceptions import ParseError
import typer
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from disko_install.utils.exceptions import (
    ConfigurationError, FlakeReferenceError, InvalidModeError,
)

CONFIG_ENV_VAR = "DISKO_INSTALL_CONFIG"
DEFAULT_CONFIG_PATH = Path("/etc/disko-install.toml")


# --- 1. Command line record ---

class Mode(str, Enum):
    """What the generated disk script does before the system is installed."""
    FORMAT = "format"
    MOUNT = "mount"

    @property
    def build_attribute(self) -> str:
        """Output attribute of the build expression producing the disk script."""
        return "diskoScript" if self is Mode.FORMAT else "mountScript"

    @classmethod
    def parse(cls, value: str) -> "Mode":
        try:
            return cls(value)
        except ValueError:
            raise InvalidModeError(value, tuple(m.value for m in cls))


class FlakeRef(BaseModel):
    """A flake location plus the name of the NixOS configuration inside it."""
    location: str
    attribute: str

    @classmethod
    def from_reference(cls, reference: str) -> "FlakeRef":
        """Splits 'location#attribute' at the last '#'."""
        location, sep, attribute = reference.rpartition("#")
        if not sep or not attribute:
            raise FlakeReferenceError(reference)
        return cls(location=location, attribute=attribute)

    def resolved_location(self) -> str:
        """Local paths become absolute real paths; flake URIs are returned as-is."""
        if self.location and os.path.exists(self.location):
            return os.path.realpath(self.location)
        return self.location

    def __str__(self) -> str:
        return f"{self.location}#{self.attribute}"


class InstallConfig(BaseModel):
    """Everything one installer run was asked to do."""
    flake: FlakeRef
    mode: Mode = Mode.FORMAT
    disks: Dict[str, str] = Field(default_factory=dict)
    dry_run: bool = False
    debug: bool = False
    show_trace: bool = False
    options: List[Tuple[str, str]] = Field(default_factory=list)

    def nix_args(self) -> List[str]:
        """Arguments passed through to the build evaluator."""
        args: List[str] = []
        if self.show_trace:
            args.append("--show-trace")
        for name, value in self.options:
            args.extend(["--option", name, value])
        return args

    def display_summary(self) -> str:
        s = typer.style("\nINSTALLATION PLAN", fg=typer.colors.BLUE, bold=True) + "\n"
        s += "----------------------------------------\n"
        s += f"  Flake:              {self.flake.location}\n"
        s += f"  Configuration:      {self.flake.attribute}\n"
        mode = typer.style(self.mode.value.upper(), fg=typer.colors.RED) if self.mode is Mode.FORMAT else self.mode.value
        s += f"  Mode:               {mode}\n"
        s += f"  Dry run:            {'yes' if self.dry_run else 'no'}\n"
        for name, device in sorted(self.disks.items()):
            s += f"  - Disk {name:<12} -> {typer.style(device, fg=typer.colors.CYAN)}\n"
        return s


# --- 2. Settings file ---

def _default_build_expression() -> str:
    return str(Path(sys.prefix) / "share" / "disko" / "install-cli.nix")


class Settings(BaseModel):
    """Tool settings, read from an optional TOML file."""
    model_config = ConfigDict(extra="forbid")

    build_command: str = "nix-build"
    build_expression: str = Field(default_factory=_default_build_expression)
    experimental_features: str = "nix-command flakes"
    installer_command: str = "nixos-install"
    installer_args: List[str] = Field(default_factory=lambda: ["--no-channel-copy", "--no-root-password"])
    mountpoint_prefix: str = "disko-install-"
    mountpoint_mode: int = 0o755
    command_timeout: Optional[float] = Field(None, gt=0)
    log_directory: Optional[str] = None
    log_file_name: str = "disko-install.log"

    @field_validator("mountpoint_mode")
    @classmethod
    def _check_mode(cls, value: int) -> int:
        if not 0 <= value <= 0o7777:
            raise ValueError("mountpoint_mode must be a permission mask such as 0o755")
        return value

    @classmethod
    def load_config_from_file(cls, path: Path) -> 'Settings':
        """Loads and validates a TOML file against the Settings schema."""
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Error reading configuration file {path}: {e}")

        try:
            data = tomlkit.parse(content).unwrap()
        except ParseError as e:
            raise ConfigurationError(f"Invalid TOML format in {path}: {e}")

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings in {path}: {e}")

    @classmethod
    def locate(cls, environ: Optional[Dict[str, str]] = None) -> 'Settings':
        """
        Loads the settings file named by $DISKO_INSTALL_CONFIG, else
        /etc/disko-install.toml when present, else returns the defaults.
        """
        environ = os.environ if environ is None else environ
        explicit = environ.get(CONFIG_ENV_VAR)
        if explicit:
            return cls.load_config_from_file(Path(explicit))
        if DEFAULT_CONFIG_PATH.is_file():
            return cls.load_config_from_file(DEFAULT_CONFIG_PATH)
        return cls()
