"""Unit tests for kindplane.shared.logging module."""

import json
import logging

import pytest

from kindplane.shared.logging import configure_logging, get_logger, level_for_verbosity


class TestLevelForVerbosity:
    """Tests for level_for_verbosity."""

    @pytest.mark.parametrize("verbose,level", [(0, "warning"), (1, "info"), (2, "debug"), (5, "debug")])
    def test_levels(self, verbose, level):
        """Test the -v count mapping."""
        assert level_for_verbosity(verbose) == level

    def test_default_when_quiet(self):
        """Test that the default applies without -v."""
        assert level_for_verbosity(0, default="error") == "error"


class TestConfigureLogging:
    """Tests for configure_logging."""

    @pytest.fixture(autouse=True)
    def reset_logging(self):
        yield
        configure_logging()

    def test_sets_root_level(self):
        """Test that the root logger follows the requested level."""
        configure_logging("debug")
        assert logging.getLogger().level == logging.DEBUG

        configure_logging("bogus")
        assert logging.getLogger().level == logging.WARNING

    def test_json_file_output(self, tmp_path):
        """Test that events are written to the log file as JSON."""
        log_file = tmp_path / "kindplane.log"
        configure_logging("info", log_file=log_file, json_output=True)

        get_logger("kindplane.test_json").info("cluster_created", name="dev")
        logging.shutdown()

        record = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert record["event"] == "cluster_created"
        assert record["name"] == "dev"
        assert record["level"] == "info"

    def test_level_filters_events(self, tmp_path):
        """Test that events below the level are dropped."""
        log_file = tmp_path / "kindplane.log"
        configure_logging("warning", log_file=log_file, json_output=True)

        logger = get_logger("kindplane.test_filter")
        logger.info("ignored")
        logger.warning("kept")
        logging.shutdown()

        events = [json.loads(line)["event"] for line in log_file.read_text().splitlines()]
        assert events == ["kept"]
