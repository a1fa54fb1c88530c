from .models import FlakeRef, InstallConfig, Mode, Settings
from .parser import parse_args, USAGE

__all__ = [
    "FlakeRef",
    "InstallConfig",
    "Mode",
    "Settings",
    "parse_args",
    "USAGE",
]
