"""Tests for logging setup and the memory event log."""

import logging

from anamnesis.logging_config import (
    log_consolidation,
    log_recall,
    log_remember,
    setup_anamnesis_logging,
)


def _event_lines(home):
    (event_file,) = (home / "logs").glob("memory-events-*.log")
    return event_file.read_text(encoding="utf-8").splitlines()


class TestSetup:
    def test_file_handler_in_data_dir(self, isolated_home):
        logger = setup_anamnesis_logging("alice")
        file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1
        assert file_handlers[0].baseFilename.startswith(str(isolated_home / "logs" / "local-"))

    def test_idempotent(self):
        setup_anamnesis_logging()
        logger = setup_anamnesis_logging()
        assert len(logger.handlers) == 1

    def test_debug_adds_console(self):
        logger = setup_anamnesis_logging(level="debug")
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 2
        setup_anamnesis_logging(level="debug")
        assert len(logger.handlers) == 2

    def test_unknown_level_falls_back_to_info(self):
        assert setup_anamnesis_logging(level="chatty").level == logging.INFO

    def test_messages_reach_the_file(self, isolated_home):
        setup_anamnesis_logging()
        logging.getLogger("anamnesis.core").info("hello from the engine")
        for handler in logging.getLogger("anamnesis").handlers:
            handler.flush()
        (log_file,) = (isolated_home / "logs").glob("local-*.log")
        assert "| INFO | anamnesis.core | hello from the engine" in log_file.read_text()


class TestEventLog:
    def test_remember_line(self, isolated_home):
        log_remember("alice", "fact", "0123456789abcdef", "Paris is the capital of France")
        (line,) = _event_lines(isolated_home)
        assert "| remember | user=alice | type=fact, id=01234567..., content=Paris" in line

    def test_recall_and_consolidate(self, isolated_home):
        log_recall("alice", "dark mode", 3, degraded=True)
        log_consolidation("alice", merged=1, archived=2)
        recall, consolidate = _event_lines(isolated_home)
        assert recall.endswith("| recall | user=alice | query=dark mode, results=3, degraded=True")
        assert consolidate.endswith("| consolidate | user=alice | merged=1, compressed=0, archived=2")
