"""
Structured JSON logging for keyspace-migrator.

Provides standardized logging with:
- JSON formatted output to stderr
- UTC timestamps with timezone info
- Structured context fields (version, script name, lease owner, ...)
- Secret redaction (store passwords never reach the log in full)

All logs use Python's standard logging module with custom formatting.
Library modules only call logging.getLogger(__name__); setup_logging() is for
host processes and the CLI.

Examples:
    >>> import logging
    >>> from keyspace_migrator.utils.logging import setup_logging
    >>> setup_logging(verbose=True)
    >>> logger = logging.getLogger("keyspace_migrator.task")
    >>> logger.info("Keyspace up to date", extra={"context": {"version": 5}})
"""

import json
import logging
import re
import sys
from typing import Any

from keyspace_migrator.utils.time import utc_timestamp


class JSONFormatter(logging.Formatter):
    """
    Formatter that outputs log records as JSON objects.

    Each record carries:
    - timestamp: ISO 8601 UTC timestamp
    - level: Log level name
    - component: Logger name
    - message: Human-readable message
    - context: Structured data passed via extra={'context': {...}}
    - exception: Formatted traceback, when exc_info is set
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": utc_timestamp(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "context") and isinstance(record.context, dict):
            log_entry["context"] = record.context

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class SecretRedactingFilter(logging.Filter):
    """
    Logging filter that redacts credentials from log messages and context.

    Covers:
    - password=... / password: ... pairs
    - user:password@host in connection URLs
    - long opaque tokens

    "password=hunter2" -> "password=***"
    """

    SECRET_PATTERNS = [
        (re.compile(r"(?i)(password\s*[=:]\s*)([^\s,;'\"]+)"), r"\1***"),
        (re.compile(r"(://[^:/\s]+:)([^@\s]+)(@)"), r"\1***\3"),
        (re.compile(r"\b[a-zA-Z0-9]{40,}\b"), "***"),
    ]

    SENSITIVE_KEYS = frozenset({"password", "secret", "token"})

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self._redact_secrets(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: self._redact_secrets(str(v)) for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    self._redact_secrets(str(arg)) for arg in record.args
                )

        if hasattr(record, "context") and isinstance(record.context, dict):
            record.context = self._redact_dict(record.context)

        return True

    def _redact_secrets(self, text: str) -> str:
        for pattern, replacement in self.SECRET_PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    def _redact_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        """Recursively redact string values and values under sensitive keys."""
        result = {}
        for key, value in data.items():
            if key.lower() in self.SENSITIVE_KEYS and value is not None:
                result[key] = "***"
            elif isinstance(value, str):
                result[key] = self._redact_secrets(value)
            elif isinstance(value, dict):
                result[key] = self._redact_dict(value)
            elif isinstance(value, list):
                result[key] = [
                    self._redact_secrets(v) if isinstance(v, str) else v for v in value
                ]
            else:
                result[key] = value
        return result


def setup_logging(verbose: bool = False, quiet_logs: bool = False) -> None:
    """
    Configure structured JSON logging on the root logger.

    Args:
        verbose: If True, log at DEBUG. Otherwise INFO.
        quiet_logs: If True (and not verbose), only WARNING and above are
            emitted. The CLI uses this in human output mode so JSON log lines
            do not interleave with Rich output.
    """
    if verbose:
        level = logging.DEBUG
    elif quiet_logs:
        level = logging.WARNING
    else:
        level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove any existing handlers (prevents duplicate logs)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(SecretRedactingFilter())

    root_logger.addHandler(handler)
