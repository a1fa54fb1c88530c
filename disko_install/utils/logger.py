# disko_install/utils/logger.py
import logging
import os
import sys
from typing import Optional
from contextlib import contextmanager

from rich.console import Console
from rich.text import Text
from rich.logging import RichHandler
from rich.theme import Theme

from disko_install.utils.exceptions import ConfigurationError, ShellCommandError

# --- 1. Custom Log Levels and Subclassed Logger ---
SECTION_LEVEL_NUM = 25
EXECUTE_LEVEL_NUM = 26
logging.addLevelName(SECTION_LEVEL_NUM, 'SECTION')
logging.addLevelName(EXECUTE_LEVEL_NUM, 'EXECUTE')


class AppLogger(logging.Logger):
    """
    Subclasses logging.Logger to add custom methods for SECTION and EXECUTE levels.
    """

    def section(self, msg, *args, **kwargs):
        """Logs a message at the SECTION level."""
        if self.isEnabledFor(SECTION_LEVEL_NUM):
            self._log(SECTION_LEVEL_NUM, msg, args, **kwargs)

    def execute(self, msg, *args, **kwargs):
        """Logs a message at the EXECUTE level."""
        if self.isEnabledFor(EXECUTE_LEVEL_NUM):
            self._log(EXECUTE_LEVEL_NUM, msg, args, **kwargs)


logging.setLoggerClass(AppLogger)

APP_THEME = Theme({"section": "bold yellow"})


# --- 2. File Formatter ---
class FileFormatter(logging.Formatter):
    """
    Detailed formatter for file output.
    """

    def format(self, record):
        record.levelname_fixed = f"{record.levelname:<9}"
        record.name_fixed = f"{record.name:<15}"
        record.filename_fixed = f"{record.filename:<20}"
        record.lineno_fixed = f"{record.lineno:<5}"

        fmt = '%(asctime)s - %(levelname_fixed)s - %(name_fixed)s - %(filename_fixed)s:%(lineno_fixed)s - %(message)s'
        self._style._fmt = fmt

        return super().format(record)


# --- 3. RichAppLogger Wrapper ---
class RichAppLogger:
    """
    Manages TUI output via Rich Console and wraps the AppLogger instance.
    """

    def __init__(self, console: Console, logger: AppLogger):
        self.console = console
        self.logger: AppLogger = logger

    def section(self, message: str, *args, **kwargs):
        """Logs a message with the custom SECTION level and prints a styled header to TUI."""
        console_msg = Text(f"SECTION: {message}", style="section")
        self.console.print(console_msg)
        self.logger.section(f"SECTION: {message}", *args, **kwargs)

    @contextmanager
    def execution_step(self, message: str, spinner: bool = True):
        """
        Context manager reporting one external command.

        With spinner=True a live Rich status line is shown while the block runs and
        is replaced by the final [COMPLETED]/[CRITICAL] line. Commands that write to
        the terminal themselves must pass spinner=False, in which case a plain
        [RUNNING] line is printed up front instead.
        """
        if spinner:
            status_cm = self.console.status(f"[bold green]...[/] [RUNNING] {message}", spinner="dots")
        else:
            self.console.print(f"[bold green]...[/] [RUNNING] {message}")
            status_cm = _NullStatus()

        with status_cm as status:
            self.logger.execute(f"[RUNNING] {message}")

            try:
                yield status

                self.console.print(f"[green]✔ [COMPLETED][/green] {message}")
                self.logger.execute(f"[COMPLETED] {message}")

            except Exception as e:
                # A failed command is expected; anything else gets a traceback.
                is_critical = isinstance(e, ShellCommandError)
                status_tag = "[CRITICAL]" if is_critical else "[FAILED]"

                self.console.print(f"[bold red]✘ {status_tag}[/bold red] {message}")
                self.logger.execute(f"{status_tag} {message}")
                self.logger.debug(f"Exception during execution step: {message}", exc_info=True)

                if not is_critical:
                    self.console.print("\n[bold red]Traceback (most recent call last):[/bold red]")
                    self.console.print_exception(show_locals=False)

                raise

    # --- Standard Logging Wrappers ---

    def info(self, message, *args, **kwargs):
        self.logger.info(message, *args, **kwargs)

    def warning(self, message, *args, **kwargs):
        self.logger.warning(message, *args, **kwargs)

    def error(self, message, *args, **kwargs):
        self.logger.error(message, *args, **kwargs)

    def debug(self, message, *args, **kwargs):
        self.logger.debug(message, *args, **kwargs)


class _NullStatus:
    def __enter__(self):
        return None

    def __exit__(self, *exc_info):
        return False


# --- 4. Filter for the EXECUTE level ---

class ExecuteFilter(logging.Filter):
    """
    Keeps EXECUTE records away from the RichHandler; execution_step already
    prints them to the console.
    """
    def filter(self, record):
        return record.levelno != EXECUTE_LEVEL_NUM


# --- 5. Initialization Routine ---
def initialize_app_logger(
    app_name: str,
    log_directory: Optional[str] = None,
    log_file_name: str = "disko-install.log",
    file_log_level: int = logging.DEBUG,
    console_log_level: int = logging.INFO,
) -> RichAppLogger:
    """
    Initializes and configures the AppLogger for Rich console output and,
    when log_directory is given, a log file.
    """
    logger: AppLogger = logging.getLogger(app_name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    if log_directory:
        log_file_path = os.path.join(log_directory, log_file_name)
        try:
            os.makedirs(log_directory, exist_ok=True)
            file_handler = logging.FileHandler(log_file_path, encoding='utf-8')
        except OSError as e:
            raise ConfigurationError(f"Cannot open log file {log_file_path}: {e}")

        file_handler.setLevel(file_log_level)
        file_handler.setFormatter(FileFormatter())
        logger.addHandler(file_handler)

    console = Console(file=sys.stderr, soft_wrap=True, theme=APP_THEME)

    stream_handler = RichHandler(
        console=console,
        show_time=False,
        show_level=True,
        show_path=False,
        keywords=[],
        level=console_log_level
    )
    stream_handler.addFilter(ExecuteFilter())
    logger.addHandler(stream_handler)

    return RichAppLogger(console, logger)
