# disko_install/__init__.py

# Utility imports
from .utils.exceptions import ShellCommandError
from .utils.exceptions import CommandNotFoundError
from .utils.exceptions import CommandTimeoutError
from .utils.exceptions import UsageError
from .utils.exceptions import BuildError
from .utils.exceptions import DeactivationError

# Import *
__all__ = [
    "ShellCommandError",
    "CommandNotFoundError",
    "CommandTimeoutError",
    "UsageError",
    "BuildError",
    "DeactivationError",
]

# Versioning
__version__ = "0.1.0"
