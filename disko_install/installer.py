# disko_install/installer.py
"""
The install sequence: build the system and the disk script, run the disk
script against a temporary root, then install the system into that root.
"""

import os
import shutil
import signal
import tempfile
import threading
from contextlib import contextmanager
from typing import Iterator, List

from disko_install.config.models import InstallConfig, Settings
from disko_install.nix import BuildOutputs, build_command, parse_build_output
from disko_install.utils.exceptions import ShellCommandError
from disko_install.utils.executor import Executor

MOUNTS_FILE = "/proc/self/mounts"
_FORWARDED_SIGNALS = (signal.SIGTERM, signal.SIGHUP)


def _decode_mount_path(field: str) -> str:
    # /proc/self/mounts escapes space, tab, newline and backslash as octal.
    return (field.replace("\\040", " ")
                 .replace("\\011", "\t")
                 .replace("\\012", "\n")
                 .replace("\\134", "\\"))


def _mounts_beneath(root: str) -> List[str]:
    """Mount points equal to or below `root`, read from the kernel's mount table."""
    try:
        with open(MOUNTS_FILE, encoding="utf-8") as f:
            lines = f.readlines()
    except OSError:
        return []

    prefix = root.rstrip("/") + "/"
    mounts = []
    for line in lines:
        fields = line.split()
        if len(fields) < 2:
            continue
        target = _decode_mount_path(fields[1])
        if target == root or target.startswith(prefix):
            mounts.append(target)
    return mounts


def outermost_mounts(mounts: List[str]) -> List[str]:
    """Drops every mount point nested inside another one in the list."""
    result: List[str] = []
    for mount in sorted(set(mounts), key=len):
        if not any(mount.startswith(outer.rstrip("/") + "/") for outer in result):
            result.append(mount)
    return result


def _raise_exit(signum, frame):
    raise SystemExit(128 + signum)


def _release_mountpoint(executor: Executor, mountpoint: str) -> None:
    """Best-effort recursive unmount, then removal of the directory."""
    log = executor.logger

    for mount in outermost_mounts(_mounts_beneath(mountpoint)):
        log.info(f"Unmounting {mount}")
        try:
            exit_code, _, stderr = executor.execute_command(["umount", "-R", mount], check=False)
        except ShellCommandError as e:
            log.error(f"Could not unmount {mount}: {e}")
            continue
        if exit_code != 0:
            log.error(f"umount -R {mount} exited with {exit_code}: {stderr.strip()}")

    remaining = _mounts_beneath(mountpoint)
    if remaining:
        log.error(f"Not removing {mountpoint}: still mounted: {', '.join(remaining)}")
        return

    try:
        shutil.rmtree(mountpoint)
    except FileNotFoundError:
        pass
    except OSError as e:
        log.error(f"Could not remove temporary root {mountpoint}: {e}")
    else:
        log.debug(f"Removed temporary root {mountpoint}")


@contextmanager
def temporary_mountpoint(executor: Executor, settings: Settings) -> Iterator[str]:
    """
    Creates the temporary installation root and releases it on every exit path.

    SIGTERM and SIGHUP are turned into SystemExit while the root is in use so that
    they unwind through the cleanup like Ctrl-C does, and are ignored while the
    root is being unmounted and removed.
    """
    mountpoint = os.path.realpath(tempfile.mkdtemp(prefix=settings.mountpoint_prefix))
    os.chmod(mountpoint, settings.mountpoint_mode)
    executor.logger.debug(f"Created temporary root {mountpoint}")

    previous = {}
    if threading.current_thread() is threading.main_thread():
        for signum in _FORWARDED_SIGNALS:
            previous[signum] = signal.signal(signum, _raise_exit)

    try:
        yield mountpoint
    finally:
        for signum in previous:
            signal.signal(signum, signal.SIG_IGN)
        try:
            _release_mountpoint(executor, mountpoint)
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)


def build(config: InstallConfig, settings: Settings, executor: Executor, mountpoint: str) -> BuildOutputs:
    """Runs the build evaluator and returns the system and disk script paths."""
    command = build_command(config, settings, mountpoint)
    _, stdout, _ = executor.run(
        description=f"Building {config.flake.attribute} and its {config.mode.value} script",
        command=command,
        capture_output=True,
        stream_stderr=True,
    )
    outputs = parse_build_output(stdout)
    executor.logger.debug(f"System: {outputs.system}")
    executor.logger.debug(f"Disk script: {outputs.disk_script}")
    return outputs


def installer_command(settings: Settings, outputs: BuildOutputs, mountpoint: str) -> List[str]:
    return [
        settings.installer_command,
        *settings.installer_args,
        "--system", outputs.system,
        "--root", mountpoint,
    ]


def run_install(config: InstallConfig, settings: Settings, executor: Executor) -> int:
    """
    Runs the whole sequence and returns the installer's exit status.

    A failing build or disk script raises ShellCommandError; the installer's
    own exit status is returned as-is.
    """
    log = executor.logger

    with temporary_mountpoint(executor, settings) as mountpoint:
        log.section("Build")
        outputs = build(config, settings, executor, mountpoint)

        log.section("Disks")
        executor.run(
            description=f"Running the {config.mode.value} script",
            command=[outputs.disk_script],
            dryrun=config.dry_run,
            capture_output=False,
        )

        log.section("Install")
        exit_code, _, _ = executor.run(
            description=f"Installing {config.flake.attribute} into {mountpoint}",
            command=installer_command(settings, outputs, mountpoint),
            dryrun=config.dry_run,
            capture_output=False,
            check=False,
        )

        if exit_code != 0:
            log.error(f"{settings.installer_command} exited with status {exit_code}")
        elif not config.dry_run:
            log.info(f"Installed {config.flake} successfully.")
        return exit_code
