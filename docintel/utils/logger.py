"""Centralized logging setup for the document intelligence pipeline.

Every record passes through a redaction filter so that credentials and
contact details picked up from documents or service errors never reach
the log output verbatim.
"""

import logging
import re
import sys

_SECRET_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\b(bearer)(\s+)[A-Za-z0-9\-._~+/]{8,}=*", re.I),
    re.compile(r"\b(token|jwt|auth)(\s*[:=]\s*)[A-Za-z0-9\-._~+/]{8,}=*", re.I),
    re.compile(r"\b(api[_\-]?key|apikey)(\s*[:=]\s*)[A-Za-z0-9\-._~+/]+=*", re.I),
    re.compile(r"\b(password|passwd|pwd)(\s*[:=]\s*)\S+", re.I),
]
_EMAIL_PATTERN = re.compile(r"\b([A-Za-z0-9._%+\-])[A-Za-z0-9._%+\-]*@([A-Za-z0-9.\-]+\.[A-Za-z]{2,})\b")


def redact(message: str) -> str:
    """Mask secrets and partially mask e-mail addresses in a string."""
    for pattern in _SECRET_PATTERNS:
        message = pattern.sub(r"\1\2[REDACTED]", message)
    return _EMAIL_PATTERN.sub(r"\1***@\2", message)


class RedactingFilter(logging.Filter):
    """Rewrite each record's message with :func:`redact` applied."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        record.msg = redact(message)
        record.args = None
        return True


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger with a standard format.

    Args:
        level: Logging level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()

    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    handler.addFilter(RedactingFilter())
    root.addHandler(handler)
    root.setLevel(numeric_level)
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    """Get a named logger instance.

    Args:
        name: Logger name, typically ``__name__`` of the calling module.

    Returns:
        Configured logger instance.
    """
    return logging.getLogger(name)
