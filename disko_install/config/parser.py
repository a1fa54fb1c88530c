# disko_install/config/parser.py
"""
Command line grammar of ``disko-install``.

``parse_args`` is a pure function: it never prints and never exits. Every
problem with the command line is raised as a ``UsageError`` subclass and
``-h/--help`` is raised as ``HelpRequested``; the entry point decides how to
report them.
"""

from typing import Dict, List, Optional, Sequence, Tuple

from disko_install.config.models import FlakeRef, InstallConfig, Mode
from disko_install.utils.exceptions import (
    HelpRequested, MissingValueError, UnknownOptionError, UsageError,
)

USAGE = """\
Usage: disko-install [options]

Options:

* -f, --flake <flake_url>#<attr_name>
  The flake to install. The NixOS configuration nixosConfigurations.<attr_name>
  is selected from it.
* --mode <mode>
  Mode of operation. Valid modes are: format, mount.
  'format' partitions and formats the disks before installing,
  'mount' only mounts them, which keeps existing data.
* --disk <name> <device>
  Use <device> for the disk called <name> in the disko configuration.
  Can be given multiple times.
* --option <name> <value>
  Pass a nix option to the build. Can be given multiple times.
* --dry-run
  Build the system and the disk script, but only print what would be run.
* --show-trace
  Show the nix evaluation trace on errors.
* -d, --debug
  Log every command before it runs.
* -h, --help
  Show this help.
"""


def parse_args(argv: Sequence[str]) -> InstallConfig:
    """Turns the raw arguments (without the program name) into an InstallConfig."""
    args = list(argv)
    if not args:
        raise UsageError("No arguments given. Run 'disko-install --help' for usage.")

    flake: Optional[str] = None
    mode = Mode.FORMAT
    disks: Dict[str, str] = {}
    options: List[Tuple[str, str]] = []
    dry_run = debug = show_trace = False

    i = 0
    while i < len(args):
        arg = args[i]
        if arg in ("-f", "--flake"):
            flake = _take(args, i, 1)[0]
            i += 1
        elif arg in ("-h", "--help"):
            raise HelpRequested()
        elif arg == "--dry-run":
            dry_run = True
        elif arg == "--show-trace":
            show_trace = True
        elif arg in ("-d", "--debug"):
            debug = True
        elif arg == "--mode":
            mode = Mode.parse(_take(args, i, 1)[0])
            i += 1
        elif arg == "--option":
            name, value = _take(args, i, 2)
            options.append((name, value))
            i += 2
        elif arg == "--disk":
            name, device = _take(args, i, 2)
            disks[name] = device
            i += 2
        else:
            raise UnknownOptionError(arg)
        i += 1

    if not flake:
        raise UsageError("Please specify a flake with --flake <flake_url>#<attr_name>")

    return InstallConfig(
        flake=FlakeRef.from_reference(flake),
        mode=mode,
        disks=disks,
        dry_run=dry_run,
        debug=debug,
        show_trace=show_trace,
        options=options,
    )


def _take(args: List[str], index: int, count: int) -> List[str]:
    """Returns the `count` values following the option at `index`."""
    values = args[index + 1:index + 1 + count]
    if len(values) < count:
        raise MissingValueError(args[index], count)
    return values
