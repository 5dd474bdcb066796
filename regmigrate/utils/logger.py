"""Logging setup for regmigrate."""

import logging
import re
import sys
from typing import Optional


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_SECRET_PATTERNS = [
    (re.compile(r'(Authorization:?\s*(?:Basic|Bearer)\s+)\S+', re.IGNORECASE), r'\1***'),
    (re.compile(r'((?:password|token|access_token)["\']?\s*[:=]\s*["\']?)[^"\',\s}]+', re.IGNORECASE), r'\1***'),
    (re.compile(r'(://[^/:@\s]+:)[^@/\s]+@'), r'\1***@'),
]

NOISY_LOGGERS = ('requests', 'urllib3')


def redact(message: str) -> str:
    """Mask credentials, tokens and userinfo in proxy URLs."""
    for pattern, replacement in _SECRET_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


class RedactingFilter(logging.Filter):
    """Rewrites records so registry credentials never reach a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Configure root logging on stderr, plus log_file when given.

    stdout is reserved for the JSON result of the command.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)
    redacting_filter = RedactingFilter()

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(redacting_filter)

    logging.basicConfig(level=log_level, handlers=handlers, format=LOG_FORMAT, force=True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
