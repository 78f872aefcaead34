"""Unit tests for logging configuration."""

import logging

import pytest
import structlog

from anamnesis.logging import configure_logging, parse_level


class TestParseLevel:
    """Tests for parse_level."""

    @pytest.mark.parametrize(("name", "expected"), [("debug", logging.DEBUG), ("INFO", logging.INFO), ("Warning", logging.WARNING)])
    def test_known_levels(self, name, expected):
        """Level names are case-insensitive."""
        assert parse_level(name) == expected

    def test_unknown_level(self):
        """Unknown names raise ValueError."""
        with pytest.raises(ValueError):
            parse_level("chatty")


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_filters_below_level(self, capsys):
        """Events below the configured level are dropped."""
        configure_logging(logging.WARNING)
        log = structlog.get_logger("anamnesis.test")

        log.info("quiet_event")
        log.warning("loud_event")

        err = capsys.readouterr().err
        assert "quiet_event" not in err
        assert "loud_event" in err

    def test_json_output(self, capsys):
        """JSON mode renders one JSON object per event."""
        configure_logging(logging.INFO, json_output=True)

        structlog.get_logger("anamnesis.test").info("json_event")

        err = capsys.readouterr().err
        assert '"event": "json_event"' in err
        assert '"level": "info"' in err
