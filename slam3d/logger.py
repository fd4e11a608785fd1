"""Loggers writing level-tagged, timestamped messages."""

from __future__ import annotations

import sys
import threading
from enum import IntEnum
from pathlib import Path

from slam3d.clock import Clock

_RESET = "\x1b[0m"
_RED = "\x1b[31m"
_GREEN = "\x1b[32m"
_YELLOW = "\x1b[33m"
_BLUE = "\x1b[34m"


class LogLevel(IntEnum):
    """Severity of a log message; higher values are more severe."""

    DEBUG = 0
    INFO = 1
    WARNING = 2
    ERROR = 3
    FATAL = 4


_LABELS = {
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO ",
    LogLevel.WARNING: "WARN ",
    LogLevel.ERROR: "ERROR",
    LogLevel.FATAL: "FATAL",
}

_COLORS = {
    LogLevel.DEBUG: _BLUE,
    LogLevel.INFO: _GREEN,
    LogLevel.WARNING: _YELLOW,
    LogLevel.ERROR: _RED,
    LogLevel.FATAL: _RED,
}


class Logger:
    """Prints coloured messages to standard output and standard error."""

    def __init__(self, clock: Clock | None = None) -> None:
        self.clock = clock if clock is not None else Clock()
        self.level = LogLevel.INFO
        self._lock = threading.Lock()

    def set_log_level(self, level: LogLevel) -> None:
        """Ignore all messages below ``level`` from now on."""
        self.level = LogLevel(level)

    def message(self, level: LogLevel, text: str) -> None:
        """Print ``text`` tagged with its level and the clock's time."""
        level = LogLevel(level)
        if level < self.level:
            return
        stamp = self.clock.now()
        line = (
            f"{_COLORS[level]}[{_LABELS[level]}]"
            f"[{stamp.seconds}.{stamp.microseconds:0<6d}] {text}{_RESET}"
        )
        stream = sys.stderr if level >= LogLevel.ERROR else sys.stdout
        with self._lock:
            print(line, file=stream, flush=True)


class FileLogger(Logger):
    """Writes messages to a log file instead of the console."""

    def __init__(self, clock: Clock | None, filename: str | Path) -> None:
        super().__init__(clock)
        self._file = open(filename, "w", encoding="utf-8")

    def message(self, level: LogLevel, text: str) -> None:
        """Append ``text`` with its level and timestamp to the log file."""
        level = LogLevel(level)
        if level < self.level:
            return
        stamp = self.clock.now()
        line = f"[{_LABELS[level]}][{stamp.seconds}.{stamp.microseconds}] {text}\n"
        with self._lock:
            self._file.write(line)
            self._file.flush()

    def close(self) -> None:
        """Close the log file."""
        self._file.close()

    def __enter__(self) -> FileLogger:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()