# disko_install/utils/exceptions.py

from typing import Optional


# --- Command execution ---

class ShellCommandError(Exception):
    """Base exception for errors during external command execution."""
    def __init__(self, command: str, exit_code: int = -1, stdout: str = "", stderr: str = "", message: str = "Command execution failed"):
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.message = message
        super().__init__(f"{self.message} (Command: '{self.command}', Exit Code: {self.exit_code})")

class CommandNotFoundError(ShellCommandError):
    """Exception raised when the executable itself is not found."""
    def __init__(self, command: str, stdout: str = "", stderr: str = ""):
        super().__init__(command, 127, stdout, stderr, "Command not found")

class CommandTimeoutError(ShellCommandError):
    """Exception raised when a command exceeds its timeout."""
    def __init__(self, command: str, timeout: Optional[float], stdout: str = "", stderr: str = ""):
        self.timeout = timeout
        super().__init__(command, 124, stdout, stderr, f"Command timed out after {timeout} seconds")

class InvalidCommandError(ShellCommandError):
    """Exception raised for empty or malformed commands."""
    def __init__(self, command: str, message: str = "Invalid command format"):
        super().__init__(command, -2, "", "", message)

class PermissionDeniedError(ShellCommandError):
    """Exception raised when a command fails because of missing permissions."""
    def __init__(self, command: str, stdout: str = "", stderr: str = ""):
        super().__init__(command, 126, stdout, stderr, "Permission denied")


# --- Command line usage ---

class UsageError(Exception):
    """Raised for any command line the installer cannot act on."""

class MissingValueError(UsageError):
    """An option was given without the value(s) it requires."""
    def __init__(self, option: str, count: int = 1):
        self.option = option
        self.count = count
        if count == 1:
            super().__init__(f"Option {option} requires an argument")
        else:
            super().__init__(f"Option {option} requires two arguments")

class UnknownOptionError(UsageError):
    def __init__(self, option: str):
        self.option = option
        super().__init__(f"Unknown option: {option}")

class InvalidModeError(UsageError):
    def __init__(self, mode: str, valid: tuple):
        self.mode = mode
        self.valid = valid
        super().__init__(f"Invalid mode: {mode}\nValid modes are: {', '.join(valid)}")

class FlakeReferenceError(UsageError):
    """The flake reference does not name a configuration attribute."""
    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(
            f"Flake reference '{reference}' does not name a NixOS configuration. "
            "Append it as a URI fragment, e.g. '#foo' selects nixosConfigurations.foo."
        )

class HelpRequested(Exception):
    """Raised by the parser when -h/--help is given. Not an error."""


# --- Installer stages ---

class ConfigurationError(Exception):
    """The settings could not be loaded or applied."""

class BuildError(Exception):
    """The build evaluator ran but did not produce the expected outputs."""
    def __init__(self, message: str, stdout: str = ""):
        self.stdout = stdout
        super().__init__(message)

class DeactivationError(Exception):
    """The block device topology could not be turned into a deactivation plan."""
