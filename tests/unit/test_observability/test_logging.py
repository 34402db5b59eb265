"""Unit tests for logging configuration."""

import io
import json
import logging
from collections.abc import Iterator

import pytest
import structlog

from qbcli.observability import (
    LevelSplitLogger,
    configure_logging,
    parse_log_level,
)


@pytest.fixture(autouse=True)
def reset_structlog() -> Iterator[None]:
    """Restore the default structlog configuration after each test."""
    yield
    structlog.reset_defaults()


class TestParseLogLevel:
    """Tests for level name parsing."""

    @pytest.mark.parametrize(
        ("name", "level"),
        [
            ("debug", logging.DEBUG),
            ("info", logging.INFO),
            ("warn", logging.WARNING),
            ("WARNING", logging.WARNING),
            ("error", logging.ERROR),
        ],
    )
    def test_known_levels(self, name: str, level: int) -> None:
        """Test that level names map to logging levels."""
        assert parse_log_level(name) == level

    def test_unknown_level(self) -> None:
        """Test that an unknown name is rejected."""
        with pytest.raises(ValueError, match="invalid log level"):
            parse_log_level("verbose")


class TestLevelSplitLogger:
    """Tests for stream routing."""

    def test_routes_by_level(self) -> None:
        """Test that debug/info go to stdout and warning/error to stderr."""
        out, err = io.StringIO(), io.StringIO()
        logger = LevelSplitLogger(out, err)

        logger.debug("d")
        logger.info("i")
        logger.warning("w")
        logger.error("e")

        assert out.getvalue().splitlines() == ["d", "i"]
        assert err.getvalue().splitlines() == ["w", "e"]


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_info_level_splits_streams(self) -> None:
        """Test that info events reach stdout and warnings stderr."""
        out, err = io.StringIO(), io.StringIO()
        configure_logging(logging.INFO, json_format=True, stdout=out, stderr=err)
        log = structlog.get_logger()

        log.debug("hidden_event")
        log.info("info_event", key="value")
        log.warning("warning_event")

        stdout_events = [json.loads(line) for line in out.getvalue().splitlines()]
        stderr_events = [json.loads(line) for line in err.getvalue().splitlines()]
        assert [e["event"] for e in stdout_events] == ["info_event"]
        assert stdout_events[0]["key"] == "value"
        assert [e["event"] for e in stderr_events] == ["warning_event"]

    def test_warn_level_uses_stderr_only(self) -> None:
        """Test that at warn level stdout stays empty."""
        out, err = io.StringIO(), io.StringIO()
        configure_logging(logging.WARNING, json_format=True, stdout=out, stderr=err)
        log = structlog.get_logger()

        log.info("info_event")
        log.error("error_event")

        assert out.getvalue() == ""
        assert json.loads(err.getvalue())["event"] == "error_event"
