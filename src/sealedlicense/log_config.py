"""Log rotation and sensitive data scrubbing for sealedlicense.

The library only creates module loggers.  The CLI calls
:func:`configure_logging`, which attaches a rotating file handler to the
``sealedlicense`` logger and installs :class:`ScrubFilter` on its handlers
so key passwords, whole license tokens and PEM private keys never reach
the log file.

An unwritable log directory is not fatal: file logging is skipped and
the command carries on.
"""

from __future__ import annotations

import logging
import os
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

_DEFAULT_LOG_DIR = os.path.join(str(Path.home()), ".sealedlicense", "logs")
LOG_FILE_NAME = "sealedlicense.log"

_REDACTED = "***REDACTED***"

_SCRUB_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # Key passwords passed with --password or SEALEDLICENSE_KEY_PASSWORD.
    (re.compile(r'(password["\x27]?\s*[:=]\s*["\x27]?)[^"\x27\s,}{\]]+', re.IGNORECASE),
     r"\1" + _REDACTED),
    # Complete tokens; short values such as a product tier stay readable.
    (re.compile(r'(license["\x27]?\s*[:=]\s*["\x27]?)[A-Za-z0-9+/=]{40,}', re.IGNORECASE),
     r"\1" + _REDACTED),
    (re.compile(r"-----BEGIN ([A-Z ]*)PRIVATE KEY-----.*?-----END \1PRIVATE KEY-----", re.DOTALL),
     "***REDACTED PRIVATE KEY***"),
]

_FORMATTER = logging.Formatter(
    "%(asctime)s %(name)s %(levelname)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def _scrub(text: str) -> str:
    """Apply all scrub patterns to *text*."""
    for pattern, replacement in _SCRUB_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def _scrub_arg(value: object) -> object:
    return _scrub(value) if isinstance(value, str) else value


class ScrubFilter(logging.Filter):
    """Redact key passwords, license tokens and PEM private keys.

    Both the message template and its string arguments are scrubbed, so
    ``logger.info("loaded %s", pem)`` is covered as well.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = _scrub(record.msg)
        if isinstance(record.args, dict):
            record.args = {key: _scrub_arg(value) for key, value in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(_scrub_arg(arg) for arg in record.args)
        return True


def _open_log_file(log_dir: str, max_bytes: int, backup_count: int) -> Optional[RotatingFileHandler]:
    try:
        os.makedirs(log_dir, exist_ok=True)
        return RotatingFileHandler(
            os.path.join(log_dir, LOG_FILE_NAME),
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
    except OSError as exc:
        logger.warning("File logging disabled, cannot write to %s: %s", log_dir, exc)
        return None


def configure_logging(
    log_dir: Optional[str] = None,
    *,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    level: Optional[str] = None,
) -> None:
    """Configure the ``sealedlicense`` logger.  Safe to call repeatedly.

    :param log_dir: Directory for log files.  Reads ``SEALEDLICENSE_LOG_DIR``
        env var, then falls back to ``~/.sealedlicense/logs/``.
    :param max_bytes: Maximum log file size before rotation (default 1 MB).
    :param backup_count: Number of rotated log files to keep (default 3).
    :param level: Log level string.  Reads ``SEALEDLICENSE_LOG_LEVEL`` env
        var, then falls back to ``"INFO"``.
    """
    log_dir = log_dir or os.environ.get("SEALEDLICENSE_LOG_DIR", _DEFAULT_LOG_DIR)
    level = level or os.environ.get("SEALEDLICENSE_LOG_LEVEL", "INFO")
    log_level = getattr(logging, level.upper(), logging.INFO)

    package_logger = logging.getLogger("sealedlicense")
    package_logger.setLevel(log_level)

    if not any(isinstance(h, RotatingFileHandler) for h in package_logger.handlers):
        file_handler = _open_log_file(log_dir, max_bytes, backup_count)
        if file_handler is not None:
            file_handler.setLevel(log_level)
            file_handler.setFormatter(_FORMATTER)
            package_logger.addHandler(file_handler)

    for handler in package_logger.handlers:
        if not any(isinstance(f, ScrubFilter) for f in handler.filters):
            handler.addFilter(ScrubFilter())
