# disko_install/cli.py
import logging
import sys
from typing import Optional, Sequence

import typer

from disko_install import core
from disko_install.config.models import Settings
from disko_install.config.parser import USAGE, parse_args
from disko_install.deactivate import deactivate_disk
from disko_install.executors.disk import DiskManager
from disko_install.installer import run_install
from disko_install.utils.exceptions import (
    BuildError, ConfigurationError, DeactivationError, HelpRequested,
    ShellCommandError, UsageError,
)
from disko_install.utils.executor import Executor
from disko_install.utils.logger import initialize_app_logger


def _exit_code_for(error: ShellCommandError) -> int:
    return error.exit_code if error.exit_code > 0 else 1


def run(argv: Optional[Sequence[str]] = None) -> int:
    """
    disko-install: parse the command line, then build, partition and install.
    Returns the process exit status.
    """
    argv = sys.argv[1:] if argv is None else list(argv)

    try:
        config = parse_args(argv)
    except HelpRequested:
        typer.echo(USAGE)
        return 0
    except UsageError as e:
        typer.echo(str(e), err=True)
        return 1

    try:
        settings = Settings.locate()
    except ConfigurationError as e:
        typer.echo(str(e), err=True)
        return 1

    try:
        core.app_logger = initialize_app_logger(
            app_name="disko_install",
            log_directory=settings.log_directory,
            log_file_name=settings.log_file_name,
            console_log_level=logging.DEBUG if config.debug else logging.INFO,
        )
    except ConfigurationError as e:
        typer.echo(str(e), err=True)
        return 1
    log = core.app_logger
    typer.echo(config.display_summary(), err=True)

    executor = Executor(logger_instance=log, default_timeout=settings.command_timeout)
    try:
        return run_install(config, settings, executor)
    except ShellCommandError as e:
        log.error(f"Installation aborted: {e}")
        return _exit_code_for(e)
    except BuildError as e:
        log.error(f"Installation aborted: {e}")
        return 1
    except KeyboardInterrupt:
        log.warning("Interrupted.")
        return 130


def main() -> None:
    sys.exit(run())


# --- disk-deactivate ---

deactivate_app = typer.Typer(
    add_completion=False,
    help="Unmount, close and wipe everything on a disk so it can be provisioned again.",
)


@deactivate_app.command()
def deactivate(disk: str = typer.Argument(..., help="Device path of the disk to release, e.g. /dev/sda.")):
    try:
        settings = Settings.locate()
    except ConfigurationError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)

    try:
        core.app_logger = initialize_app_logger(
            app_name="disko_install.deactivate",
            log_directory=settings.log_directory,
            log_file_name=settings.log_file_name,
        )
    except ConfigurationError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)
    log = core.app_logger

    manager = DiskManager(Executor(logger_instance=log, default_timeout=settings.command_timeout))
    try:
        failures = deactivate_disk(disk, manager)
    except ShellCommandError as e:
        log.error(f"Could not read the topology of {disk}: {e}")
        raise typer.Exit(code=1)
    except DeactivationError as e:
        log.error(str(e))
        raise typer.Exit(code=1)

    if failures:
        log.error(f"{failures} step(s) failed while deactivating {disk}")
        raise typer.Exit(code=1)
    log.info(f"{disk} is released.")


def deactivate_main() -> None:
    deactivate_app()
