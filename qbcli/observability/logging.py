"""Structured logging configuration."""

import logging
import sys
import threading
from typing import TextIO

import structlog


LOG_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class LevelSplitLogger:
    """Final structlog logger that routes lines by level.

    Debug and info lines go to the standard output stream; warning and
    error lines go to the standard error stream. Streams default to the
    current ``sys.stdout``/``sys.stderr`` at write time.
    """

    def __init__(self, stdout: TextIO | None = None, stderr: TextIO | None = None) -> None:
        self._stdout = stdout
        self._stderr = stderr
        self._lock = threading.Lock()

    def _write(self, stream: TextIO, message: str) -> None:
        with self._lock:
            stream.write(message + "\n")
            stream.flush()

    def _low(self, message: str) -> None:
        self._write(self._stdout or sys.stdout, message)

    def _high(self, message: str) -> None:
        self._write(self._stderr or sys.stderr, message)

    debug = _low
    info = _low
    msg = _low
    warning = _high
    warn = _high
    error = _high
    exception = _high
    critical = _high
    fatal = _high


class LevelSplitLoggerFactory:
    """Produces LevelSplitLogger instances bound to fixed streams."""

    def __init__(self, stdout: TextIO | None = None, stderr: TextIO | None = None) -> None:
        self._stdout = stdout
        self._stderr = stderr

    def __call__(self, *args: object) -> LevelSplitLogger:
        return LevelSplitLogger(self._stdout, self._stderr)


def parse_log_level(name: str) -> int:
    """Convert a level name to a logging level.

    Args:
        name: One of debug, info, warn, warning, error (case-insensitive).

    Returns:
        Numeric logging level.

    Raises:
        ValueError: If the name is unknown.
    """
    try:
        return LOG_LEVELS[name.strip().lower()]
    except KeyError:
        msg = f"invalid log level {name!r}: expected one of debug, info, warn, error"
        raise ValueError(msg) from None


def configure_logging(
    level: int = logging.WARNING,
    json_format: bool = False,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
) -> None:
    """Configure structured logging for the application.

    At debug and info levels, debug/info events are written to stdout and
    warning/error events to stderr. At warn and error levels only stderr
    receives output.

    Args:
        level: Logging level (default: WARNING).
        json_format: Whether to use JSON format (default: False).
        stdout: Stream for debug/info events (default: sys.stdout).
        stderr: Stream for warning/error events (default: sys.stderr).
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer(sort_keys=True))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=LevelSplitLoggerFactory(stdout, stderr),
        cache_logger_on_first_use=False,
    )

    # Third-party libraries (httpx) log through the standard library
    logging.basicConfig(
        format="%(message)s",
        stream=stderr or sys.stderr,
        level=max(level, logging.INFO),
    )

