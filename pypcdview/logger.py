"""
Logger used across the pypcdview package.

Every module asks for ``get_logger(__name__)``; the returned logger shares the
sinks and thresholds of the package-wide root logger and only adds its own
name tag to each line.
"""
import os
import sys
import time
from typing import Optional, Union
from enum import Enum, auto


class LogLevel(Enum):
    """Log levels for controlling verbosity."""
    DEBUG = auto()
    INFO = auto()
    WARNING = auto()
    ERROR = auto()
    CRITICAL = auto()


class ViewerLogger:
    """
    Writes to console, file, or both, each with its own minimum level.
    """
    def __init__(
        self,
        mode: str = 'console',
        log_file: Optional[str] = None,
        console_level: LogLevel = LogLevel.INFO,
        file_level: LogLevel = LogLevel.DEBUG,
        include_timestamp: bool = True,
        name: str = 'pypcdview',
    ):
        """
        Args:
            mode: 'console', 'file', or 'both'
            log_file: Path to log file (required if mode is 'file' or 'both')
            console_level: Minimum log level for console output
            file_level: Minimum log level for file output
            include_timestamp: Whether to prefix lines with a timestamp
            name: Tag written after the level on every line
        """
        if mode not in ('console', 'file', 'both'):
            raise ValueError("mode must be 'console', 'file', or 'both'")
        if mode in ('file', 'both'):
            if not log_file:
                raise ValueError("log_file must be provided when mode is 'file' or 'both'")
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            # Start every run with an empty file
            with open(log_file, 'w') as f:
                f.write('')

        self.mode = mode
        self.log_file = log_file
        self.console_level = console_level
        self.file_level = file_level
        self.include_timestamp = include_timestamp
        self.name = name
        self._parent: Optional['ViewerLogger'] = None

    def child(self, name: str) -> 'ViewerLogger':
        """Return a logger tagged with ``name`` that follows this logger's settings."""
        logger = ViewerLogger.__new__(ViewerLogger)
        logger.name = name
        logger._parent = self
        return logger

    def _root(self) -> 'ViewerLogger':
        if self._parent is None:
            return self
        return self._parent._root()

    def isEnabledFor(self, level: LogLevel) -> bool:
        """Same contract as ``logging.Logger.isEnabledFor``."""
        root = self._root()
        console_enabled = root.mode in ('console', 'both') and level.value >= root.console_level.value
        file_enabled = root.mode in ('file', 'both') and level.value >= root.file_level.value
        return console_enabled or file_enabled

    def _format_message(self, message: str, level: LogLevel) -> str:
        root = self._root()
        timestamp = f"[{time.strftime('%Y-%m-%d %H:%M:%S')}] " if root.include_timestamp else ""
        return f"{timestamp}[{level.name}] [{self.name}] {message}"

    def log(self, message: str, level: LogLevel = LogLevel.INFO) -> None:
        """
        Log a message with the specified level.

        Args:
            message: The message to log
            level: The log level (default: INFO)
        """
        if not self.isEnabledFor(level):
            return
        root = self._root()
        formatted = self._format_message(message, level)
        if root.mode in ('console', 'both') and level.value >= root.console_level.value:
            print(formatted, file=sys.stderr if level.value >= LogLevel.WARNING.value else sys.stdout)
        if root.mode in ('file', 'both') and root.log_file and level.value >= root.file_level.value:
            with open(root.log_file, 'a') as f:
                f.write(formatted + '\n')

    def debug(self, message: str) -> None:
        self.log(message, LogLevel.DEBUG)

    def info(self, message: str) -> None:
        self.log(message, LogLevel.INFO)

    def warning(self, message: str) -> None:
        self.log(message, LogLevel.WARNING)

    def error(self, message: str) -> None:
        self.log(message, LogLevel.ERROR)

    def critical(self, message: str) -> None:
        self.log(message, LogLevel.CRITICAL)

    def __call__(self, message: str, level: Union[str, LogLevel] = LogLevel.INFO) -> None:
        """Allow ``logger("text", "debug")`` as a shorthand for ``log``."""
        if isinstance(level, str):
            level = getattr(LogLevel, level.upper(), LogLevel.INFO)
        self.log(message, level)


DEFAULT_LOGGER = ViewerLogger(mode='console')


def get_logger(name: Optional[str] = None) -> ViewerLogger:
    """
    Get the package logger, tagged with ``name`` when one is given.

    Children resolve the root at call time, so a later ``set_logger`` also
    redirects loggers that modules fetched at import.
    """
    if name is None:
        return _ROOT
    return _ROOT.child(name)


class _RootProxy(ViewerLogger):
    """Stable root handle that always forwards to the current DEFAULT_LOGGER."""
    def __init__(self):
        self.name = 'pypcdview'
        self._parent = None

    def _root(self) -> ViewerLogger:
        return DEFAULT_LOGGER


_ROOT = _RootProxy()


def set_logger(logger: Union[ViewerLogger, None]) -> None:
    """
    Replace the package-wide logger.

    Args:
        logger: A ViewerLogger instance or None to reset to a console logger
    """
    global DEFAULT_LOGGER
    if logger is None:
        DEFAULT_LOGGER = ViewerLogger(mode='console')
    elif not isinstance(logger, ViewerLogger):
        raise ValueError("Logger must be an instance of ViewerLogger")
    else:
        DEFAULT_LOGGER = logger
