"""Leveled logger writing to standard output, a file and the system log."""

from __future__ import annotations

import datetime
import enum
import os
import sys
import threading
from typing import Any, Iterable, Optional

try:
    import syslog as _native_syslog
except ImportError:  # pragma: no cover - platforms without syslog
    _native_syslog = None


class Level(enum.IntEnum):
    """Log levels."""

    DEBUG = 1
    INFO = 2
    WARN = 3
    ERROR = 4


class Destination(enum.Enum):
    """Log destinations."""

    STDOUT = 0
    FILE = 1
    SYSLOG = 2


_LEVEL_STYLES = {
    Level.DEBUG: ("DEB", "0;36"),
    Level.INFO: ("INF", "32"),
    Level.WARN: ("WAR", "1;33"),
    Level.ERROR: ("ERR", "97;41"),
}
_GRAY = "90"
_SYSLOG_IDENT = "rtmpstack"


def _render(code: str, text: str) -> str:
    return f"\x1b[{code}m{text}\x1b[0m"


def _format_entry(level: int, text: str, color: bool) -> str:
    stamp = datetime.datetime.now().strftime("%Y/%m/%d %H:%M:%S ")
    label, code = _LEVEL_STYLES.get(level, ("", ""))
    if color:
        stamp = _render(_GRAY, stamp)
        if label:
            label = _render(code, label)
    return f"{stamp}{label} {text}\n"


class _Syslog:
    """Writes entries to the system logger."""

    def __init__(self, ident: str) -> None:
        if _native_syslog is None:
            raise OSError("not implemented on windows")
        _native_syslog.openlog(ident, 0, _native_syslog.LOG_DAEMON)

    def write(self, entry: str) -> None:
        _native_syslog.syslog(_native_syslog.LOG_INFO, entry.rstrip("\n"))

    def close(self) -> None:
        _native_syslog.closelog()


class Logger:
    """A log handler writing entries at or above ``level`` to its destinations."""

    def __init__(
        self,
        level: int,
        destinations: Iterable[Destination],
        file_path: str = "",
    ) -> None:
        self.level = Level(level)
        self.destinations = frozenset(destinations)
        self._lock = threading.Lock()
        self._file: Optional[Any] = None
        self._syslog: Optional[_Syslog] = None

        try:
            if Destination.FILE in self.destinations:
                fd = os.open(
                    file_path, os.O_APPEND | os.O_CREAT | os.O_WRONLY, 0o644
                )
                self._file = os.fdopen(fd, "a", encoding="utf-8")

            if Destination.SYSLOG in self.destinations:
                self._syslog = _Syslog(_SYSLOG_IDENT)
        except BaseException:
            self.close()
            raise

    def close(self) -> None:
        """Release the log file and the system logger."""
        if self._file is not None:
            self._file.close()
            self._file = None
        if self._syslog is not None:
            self._syslog.close()
            self._syslog = None

    def __enter__(self) -> "Logger":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def log(self, level: int, format: str, *args: Any) -> None:
        """Write an entry; ``format`` is a printf-style template for ``args``."""
        if level < self.level:
            return

        text = format % args if args else format

        with self._lock:
            if Destination.STDOUT in self.destinations:
                stdout = sys.stdout
                isatty = getattr(stdout, "isatty", None)
                color = bool(isatty and isatty())
                stdout.write(_format_entry(level, text, color))
                stdout.flush()

            if Destination.FILE in self.destinations and self._file is not None:
                self._file.write(_format_entry(level, text, False))
                self._file.flush()

            if Destination.SYSLOG in self.destinations and self._syslog is not None:
                self._syslog.write(_format_entry(level, text, False))