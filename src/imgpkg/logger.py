"""
imgpkg.logger — Line-safe output for concurrent operations.

One Logger owns the stream and the lock. Callers get a
PrefixedWriter per task; it only knows its prefix and forwards
whole chunks under the shared lock, so two workers never
interleave inside a line:

    logger = Logger()
    out = logger.prefixed("copy | ")
    out.writef("exporting %d images...", 3)
"""

from __future__ import annotations

import threading
from typing import TextIO

import click


class Logger:
    """Shared sink guarded by a single lock."""

    def __init__(self, writer: TextIO | None = None):
        self._writer = writer
        self._lock = threading.Lock()

    @classmethod
    def discard(cls) -> Logger:
        return cls(_NullWriter())

    def prefixed(self, prefix: str) -> PrefixedWriter:
        return PrefixedWriter(prefix, self)

    def _emit(self, text: str) -> None:
        with self._lock:
            if self._writer is None:
                click.echo(text, err=True, nl=False)
            else:
                click.echo(text, file=self._writer, nl=False)


class _NullWriter:
    """Accepts writes and keeps nothing."""

    def write(self, data: str) -> int:
        return len(data)

    def flush(self) -> None:
        pass


class PrefixedWriter:
    """Adds a prefix to every line and forwards it to the Logger."""

    def __init__(self, prefix: str, logger: Logger):
        self.prefix = prefix
        self._logger = logger

    def write(self, data: str) -> int:
        text = data[:-1] if data.endswith("\n") else data
        text = self.prefix + text.replace("\n", "\n" + self.prefix) + "\n"
        self._logger._emit(text)
        # callers treat this like a stream write
        return len(data)

    def writef(self, fmt: str, *args) -> None:
        self.write(fmt % args if args else fmt)
