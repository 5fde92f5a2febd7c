"""Logging configuration for pipeline manager.

Stage progress goes to the rich console; the logging tree carries the
diagnostic record. Everything that reaches a handler passes through a
RedactingFilter once credentials are known, so a registry password or Sonar
token never lands in a log file.
"""

import logging
import os
import sys
from collections.abc import Callable
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Level for the root logger when neither --verbose nor a level is given
LOG_LEVEL_ENV = "PIPELINE_MGR_LOG_LEVEL"

# The kubernetes client logs every request through urllib3, and
# ansible-runner logs each event it streams from the playbook.
NOISY_LOGGERS = {
    "urllib3": logging.WARNING,
    "kubernetes": logging.WARNING,
    "ansible_runner": logging.WARNING,
}


class RedactingFilter(logging.Filter):
    """Rewrites each record's message with a redaction function."""

    def __init__(self, redact: Callable[[str], str]):
        super().__init__()
        self.redact = redact

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging(
    level: str | None = None, log_file: Path | None = None, verbose: bool = False
) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL); defaults
            to $PIPELINE_MGR_LOG_LEVEL, then INFO
        log_file: Optional path to log file, which always records DEBUG
        verbose: If True, set level to DEBUG and echo everything to stderr
    """
    if verbose:
        level = "DEBUG"
    level = (level or os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    if not isinstance(logging.getLevelName(level), int):
        level = "INFO"

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if log_file else level)
    root_logger.handlers.clear()

    # Stage output is shown by the console, so stderr only gets warnings unless verbose
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
        except OSError as e:
            logging.warning(f"Failed to create log file handler: {e}")

    for name, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else noisy_level)


def install_redaction(redact: Callable[[str], str]) -> None:
    """Redact every record written by the root logger's handlers.

    Calling it again replaces the previous redaction.
    """
    for handler in logging.getLogger().handlers:
        for existing in [f for f in handler.filters if isinstance(f, RedactingFilter)]:
            handler.removeFilter(existing)
        handler.addFilter(RedactingFilter(redact))


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
