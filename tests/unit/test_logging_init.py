from __future__ import annotations

import logging
from io import StringIO

from sheet_transfer.logging.init import (
    NOISY_LIBRARY_LOGGERS,
    LabeledFormatter,
    get_logger,
    log_summary,
    set_debug,
    setup_logging,
)


def _capture(logger: logging.Logger) -> StringIO:
    captured_output = StringIO()
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    handler = logging.StreamHandler(captured_output)
    handler.setFormatter(LabeledFormatter())
    logger.addHandler(handler)
    return captured_output


def test_setup_logging_creates_logger_with_labeled_formatter():
    """Test that setup_logging creates a logger with labeled format."""
    logger = setup_logging()

    assert logger.name == "sheet_transfer"
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, LabeledFormatter)
    assert logger.propagate is False


def test_logging_labeled_prefixes():
    """Test that logging outputs have correct labeled prefixes (INFO|WARN|ERROR|SUMMARY)."""
    logger = setup_logging()
    captured_output = _capture(logger)

    logger.info("Test info message")
    logger.warning("Test warning message")
    logger.error("Test error message")
    logger.log(25, "Test summary message")

    lines = captured_output.getvalue().strip().split("\n")
    assert lines == [
        "INFO Test info message",
        "WARN Test warning message",
        "ERROR Test error message",
        "SUMMARY Test summary message",
    ]


def test_module_loggers_share_the_package_handler():
    """Test that child module loggers reach the package handler."""
    logger = setup_logging()
    captured_output = _capture(logger)

    logging.getLogger("sheet_transfer.services.orchestrator").warning("checkpoint failed")

    assert captured_output.getvalue().strip() == "WARN checkpoint failed"


def test_get_logger_returns_configured_logger():
    setup_logger = setup_logging()
    assert get_logger() is setup_logger


def test_setup_logging_idempotent():
    """Test that calling setup_logging multiple times is safe."""
    logger1 = setup_logging()
    logger2 = setup_logging(logging.DEBUG)

    assert logger1 is logger2
    assert len(logger1.handlers) == 1


def test_exception_info_is_appended():
    logger = setup_logging()
    captured_output = _capture(logger)
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        logger.exception("transfer failed")

    output = captured_output.getvalue()
    assert output.startswith("ERROR transfer failed\n")
    assert "RuntimeError: boom" in output


def test_log_summary_convenience_function():
    """Test the log_summary convenience function."""
    logger = setup_logging()
    captured_output = _capture(logger)

    log_summary("job=1a2b3c4d status=completed rows=2/2")

    assert captured_output.getvalue().strip() == "SUMMARY job=1a2b3c4d status=completed rows=2/2"
    assert logging.getLevelName(25) == "SUMMARY"


def test_set_debug_toggles_package_and_library_levels():
    logger = setup_logging()
    assert logging.getLogger("urllib3").level == logging.WARNING

    set_debug()
    assert logger.level == logging.DEBUG
    assert all(h.level == logging.DEBUG for h in logger.handlers)
    assert all(logging.getLogger(name).level == logging.NOTSET for name in NOISY_LIBRARY_LOGGERS)

    set_debug(False)
    assert logger.level == logging.INFO
    assert logging.getLogger("googleapiclient.discovery").level == logging.WARNING
