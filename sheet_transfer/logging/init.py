from __future__ import annotations

import logging
import sys

"""Console logging for the transfer tool.

Every line starts with a label (INFO|WARN|ERROR|SUMMARY). Modules log through
``logging.getLogger(__name__)``, which puts them under the ``sheet_transfer``
namespace, so one stdout handler on that logger serves the whole package.
Per-job diagnostics (events bound to a job id) live in
``sheet_transfer.logging.events``; this module only covers the console.

HTTP client libraries log every request at DEBUG/INFO; their loggers are
capped at WARNING unless ``--debug`` asks for everything.
"""

__all__ = [
    "LOGGER_NAME",
    "NOISY_LIBRARY_LOGGERS",
    "SUMMARY_LEVEL",
    "LabeledFormatter",
    "get_logger",
    "log_summary",
    "reset_logging",
    "set_debug",
    "setup_logging",
]

LOGGER_NAME = "sheet_transfer"

# Between INFO (20) and WARNING (30): shown at the default level, never filtered as noise
SUMMARY_LEVEL = 25

NOISY_LIBRARY_LOGGERS = (
    "urllib3",
    "googleapiclient.discovery",
    "googleapiclient.discovery_cache",
    "google.auth.transport",
)

_logger: logging.Logger | None = None


class LabeledFormatter(logging.Formatter):
    """``LABEL message`` lines; tracebacks follow on the next lines."""

    LEVEL_LABELS = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARN",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
        SUMMARY_LEVEL: "SUMMARY",
    }

    def format(self, record: logging.LogRecord) -> str:
        label = self.LEVEL_LABELS.get(record.levelno, record.levelname)
        text = f"{label} {record.getMessage()}"
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


def _cap_library_loggers(level: int) -> None:
    for name in NOISY_LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(level)


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """Install the labeled stdout handler on the package logger.

    Calling it again returns the logger configured the first time.
    """
    global _logger

    if _logger is not None:
        return _logger

    logging.addLevelName(SUMMARY_LEVEL, "SUMMARY")

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(LabeledFormatter())
    logger.addHandler(console)
    # stdout is the CLI contract; the root logger must not print the same line twice
    logger.propagate = False

    _cap_library_loggers(logging.WARNING)
    _logger = logger
    return logger


def set_debug(enabled: bool = True) -> logging.Logger:
    """Switch the package logger (and its handlers) to DEBUG or back to INFO.

    In debug mode the HTTP client loggers are uncapped as well.
    """
    logger = get_logger()
    level = logging.DEBUG if enabled else logging.INFO
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)
    _cap_library_loggers(logging.NOTSET if enabled else logging.WARNING)
    return logger


def get_logger() -> logging.Logger:
    if _logger is None:
        return setup_logging()
    return _logger


def log_summary(message: str) -> None:
    """Emit the final ``SUMMARY ...`` line."""
    get_logger().log(SUMMARY_LEVEL, message)


def reset_logging() -> None:
    """Forget the configured logger so the next setup_logging() rebuilds it (tests)."""
    global _logger
    _logger = None
