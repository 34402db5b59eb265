"""Logging setup for the qbcli command line."""

from qbcli.observability.logging import (
    LOG_LEVELS,
    LevelSplitLogger,
    LevelSplitLoggerFactory,
    configure_logging,
    parse_log_level,
)


__all__ = [
    "LOG_LEVELS",
    "LevelSplitLogger",
    "LevelSplitLoggerFactory",
    "configure_logging",
    "parse_log_level",
]
