# disko_install/utils/executor.py

import subprocess
import shlex
from typing import Tuple, Optional, Union, List

from disko_install.utils.exceptions import (
    ShellCommandError, CommandNotFoundError, CommandTimeoutError,
    InvalidCommandError, PermissionDeniedError,
)
from disko_install.utils.logger import RichAppLogger


class Executor:
    """
    Runs external commands for the installer, with the logger injected by the caller.

    Commands are always executed as argument vectors; nothing is handed to a shell.
    """

    def __init__(self,
                 logger_instance: RichAppLogger,
                 default_timeout: Optional[float] = None):
        self.logger = logger_instance

        if default_timeout is not None and default_timeout <= 0:
            self.logger.error("Default timeout must be a positive number or None.")
            raise ValueError("Default timeout must be a positive number or None.")

        self._default_timeout = default_timeout
        self.logger.debug(f"Executor initialized with default_timeout: {self._default_timeout}")

    def _prepare_command(self, command: Union[str, list]) -> List[str]:
        """
        Turns the command into an argument vector, splitting strings with shlex.
        """
        if not command:
            self.logger.error("Attempted to prepare an empty command.")
            raise InvalidCommandError(str(command), "Command cannot be empty.")

        if isinstance(command, str):
            try:
                return shlex.split(command)
            except ValueError as e:
                self.logger.error(f"Failed to parse command string '{command}': {e}")
                raise InvalidCommandError(command, f"Failed to parse command string: {e}")
        elif isinstance(command, list):
            if not all(isinstance(arg, str) for arg in command):
                raise InvalidCommandError(str(command), "All elements in command list must be strings.")
            return command

        self.logger.error(f"Invalid command type: {type(command)}. Expected str or list.")
        raise InvalidCommandError(str(command), "Command must be a string or a list of strings.")

    def execute_command(self,
                        command: Union[str, list],
                        capture_output: bool = True,
                        stream_stderr: bool = False,
                        timeout: Optional[float] = None,
                        check: bool = True
                        ) -> Tuple[int, str, str]:
        """
        Executes a command using subprocess.run. This is the low-level execution method.

        capture_output captures stdout (and stderr unless stream_stderr is set, in
        which case stderr goes straight to the terminal). Without capture_output
        both streams are inherited.
        """
        actual_timeout = timeout if timeout is not None else self._default_timeout
        command_to_execute = self._prepare_command(command)
        cmd_string_for_log = shlex.join(command_to_execute)

        self.logger.debug(f"Attempting low-level execution: '{cmd_string_for_log}' "
                          f"timeout={actual_timeout}s, capture_output={capture_output}, check={check}")

        stdout_target = subprocess.PIPE if capture_output else None
        stderr_target = subprocess.PIPE if capture_output and not stream_stderr else None

        try:
            process = subprocess.run(
                command_to_execute,
                stdout=stdout_target,
                stderr=stderr_target,
                text=True,
                timeout=actual_timeout,
                check=False
            )
        except FileNotFoundError:
            self.logger.error(f"Command '{cmd_string_for_log}' not found. Ensure it's in the system's PATH.")
            raise CommandNotFoundError(command=cmd_string_for_log, stderr="Command not found. Check PATH.")
        except PermissionError:
            self.logger.error(f"Command '{cmd_string_for_log}' is not executable.")
            raise PermissionDeniedError(command=cmd_string_for_log)
        except subprocess.TimeoutExpired as e:
            self.logger.warning(f"Command '{cmd_string_for_log}' timed out after {actual_timeout} seconds.")
            stdout = _as_text(e.stdout)
            stderr = _as_text(e.stderr)
            raise CommandTimeoutError(command=cmd_string_for_log, timeout=actual_timeout, stdout=stdout, stderr=stderr)

        stdout = process.stdout or ""
        stderr = process.stderr or ""
        exit_code = process.returncode

        if check and exit_code != 0:
            self.logger.error(f"Command: '{cmd_string_for_log}', Exit Code: {exit_code}, Stderr: {stderr.strip()}")

            if exit_code == 127 or "command not found" in stderr.lower():
                raise CommandNotFoundError(command=cmd_string_for_log, stdout=stdout, stderr=stderr)
            elif exit_code == 126 or "permission denied" in stderr.lower():
                raise PermissionDeniedError(command=cmd_string_for_log, stdout=stdout, stderr=stderr)
            raise ShellCommandError(
                command=cmd_string_for_log,
                exit_code=exit_code,
                stdout=stdout,
                stderr=stderr,
                message=f"Command failed with exit code {exit_code}"
            )

        self.logger.debug(f"Low-level execution of '{cmd_string_for_log}' completed with exit code {exit_code}")
        return exit_code, stdout, stderr

    def run(self,
            description: str,
            command: Union[str, list],
            dryrun: bool = False,
            capture_output: bool = True,
            stream_stderr: bool = False,
            check: bool = True
            ) -> Tuple[int, str, str]:
        """
        Executes a command inside the RichAppLogger's execution_step context manager.

        In dry-run mode the full command line is logged and nothing is executed.
        """
        prepared_command_list = self._prepare_command(command)

        if dryrun:
            self.logger.info(f"DRY RUN: Execution skipped for: '{description}'")
            self.logger.info(f"DRY RUN: would run: {shlex.join(prepared_command_list)}")
            return 0, "", ""

        self.logger.debug(f"Running: {shlex.join(prepared_command_list)}")

        # A live spinner only makes sense while the command's output is captured.
        spinner = capture_output and not stream_stderr
        with self.logger.execution_step(description, spinner=spinner):
            exit_code, stdout, stderr = self.execute_command(
                command=prepared_command_list,
                capture_output=capture_output,
                stream_stderr=stream_stderr,
                check=check
            )

            self.logger.debug(f"Command '{description}' finished with exit code {exit_code}.")
            if stdout:
                self.logger.debug(f"  Stdout:\n{stdout.strip()}")
            if stderr:
                self.logger.debug(f"  Stderr:\n{stderr.strip()}")

            return exit_code, stdout, stderr


def _as_text(data) -> str:
    if not data:
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace")
    return data
