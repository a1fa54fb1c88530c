# disko_install/nix.py
"""
Everything that speaks the build evaluator's language: string escaping,
attribute-set serialization, the build command line, and its output.
"""

from typing import List, Mapping

from pydantic import BaseModel

from disko_install.config.models import InstallConfig, Settings
from disko_install.utils.exceptions import BuildError

SYSTEM_ATTRIBUTE = "installToplevel"


class BuildOutputs(BaseModel):
    """Store paths produced by one build."""
    system: str
    disk_script: str


def escape_string(value: str) -> str:
    """Escapes text for use inside a double-quoted Nix string literal."""
    return (
        value.replace("\\", "\\\\")
             .replace('"', '\\"')
             .replace("${", "\\${")
    )


def serialize_attrset(mapping: Mapping[str, str]) -> str:
    """
    Serializes a flat string mapping as a Nix attribute set, e.g.
    {"main"="/dev/sda";}. Keys are sorted so the same mapping always
    produces the same text.
    """
    entries = "".join(
        f'"{escape_string(key)}"="{escape_string(value)}";'
        for key, value in sorted(mapping.items())
    )
    return "{" + entries + "}"


def build_command(config: InstallConfig, settings: Settings, mountpoint: str) -> List[str]:
    """Argument vector that builds the system and the disk script for `config`."""
    return [
        settings.build_command,
        "--extra-experimental-features", settings.experimental_features,
        *config.nix_args(),
        "--no-out-link",
        "--argstr", "flake", config.flake.resolved_location(),
        "--argstr", "flakeAttr", config.flake.attribute,
        "--argstr", "rootMountPoint", mountpoint,
        "--arg", "diskMappings", serialize_attrset(config.disks),
        "-A", SYSTEM_ATTRIBUTE,
        "-A", config.mode.build_attribute,
        settings.build_expression,
    ]


def parse_build_output(stdout: str) -> BuildOutputs:
    """The build prints one store path per requested attribute, in order."""
    paths = [line.strip() for line in stdout.splitlines() if line.strip()]
    if len(paths) != 2:
        raise BuildError(
            f"Expected the build to produce 2 paths (system, disk script), got {len(paths)}",
            stdout=stdout,
        )
    return BuildOutputs(system=paths[0], disk_script=paths[1])
