"""Logging setup with SAS token redaction.

All modules log through ``logging.getLogger(__name__)``; this module only
configures the ``azure_venv`` logger tree and guarantees that SAS
credentials never reach a handler.
"""

from __future__ import annotations

import logging
import re
import sys
from datetime import datetime, timezone

from azure_venv.core.types import LogLevel

ROOT_LOGGER_NAME = "azure_venv"
REDACTED = "[REDACTED]"

_SIG_RE = re.compile(r"sig=[^&\s]*")
_SE_RE = re.compile(r"se=[^&\s]*")


def sanitize(text: str, sas_token: str) -> str:
    """Remove SAS credentials from a string.

    Replaces the exact token, and any ``sig=`` / ``se=`` query values, with
    ``[REDACTED]``.
    """
    result = text
    if sas_token:
        result = result.replace(sas_token, REDACTED)
    result = _SIG_RE.sub(f"sig={REDACTED}", result)
    result = _SE_RE.sub(f"se={REDACTED}", result)
    return result


class SasRedactingFilter(logging.Filter):
    """Logging filter that sanitizes the rendered message of every record."""

    def __init__(self, sas_token: str = "") -> None:
        super().__init__()
        self.sas_token = sas_token

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        record.msg = sanitize(message, self.sas_token)
        record.args = None
        if record.exc_info and record.exc_text is None and record.exc_info[1] is not None:
            record.exc_text = sanitize(
                logging.Formatter().formatException(record.exc_info), self.sas_token
            )
        return True


class AzureVenvFormatter(logging.Formatter):
    """Format records as ``[azure-venv] [LEVEL] [ISO-timestamp] message``."""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:  # noqa: N802
        return datetime.fromtimestamp(record.created, timezone.utc).isoformat(
            timespec="milliseconds"
        )

    def format(self, record: logging.LogRecord) -> str:
        level = "WARN" if record.levelno == logging.WARNING else record.levelname
        line = f"[azure-venv] [{level}] [{self.formatTime(record)}] {record.getMessage()}"
        if record.exc_text:
            line = f"{line}\n{record.exc_text}"
        return line


def configure_logging(level: LogLevel | str = LogLevel.INFO, sas_token: str = "") -> logging.Logger:
    """Configure the azure_venv logger.

    Replaces any handler previously installed by this function, so it can be
    called again once the SAS token is known.

    Args:
        level: Minimum level to emit.
        sas_token: Token to redact from all output.

    Returns:
        The configured ``azure_venv`` logger.
    """
    level = LogLevel(level)
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level.logging_level)

    for handler in list(root.handlers):
        if getattr(handler, "_azure_venv", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(AzureVenvFormatter())
    handler.addFilter(SasRedactingFilter(sas_token))
    handler._azure_venv = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.propagate = False
    return root
