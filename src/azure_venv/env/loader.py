"""Parsing of .env content with python-dotenv.

Neither function touches the process environment; the precedence merge
is the only place variables are applied.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path

from dotenv import dotenv_values

logger = logging.getLogger(__name__)


def _clean(values: dict[str, str | None]) -> dict[str, str]:
    # Bare keys without '=' parse to None; treat them as empty strings
    return {key: "" if value is None else value for key, value in values.items()}


def parse_env_bytes(data: bytes) -> dict[str, str]:
    """Parse .env content downloaded from the blob store.

    Args:
        data: Raw UTF-8 content. A leading BOM is ignored.

    Returns:
        Mapping of variable names to values, in file order.
    """
    text = data.decode("utf-8-sig", errors="replace")
    return _clean(dotenv_values(stream=io.StringIO(text), interpolate=False))


def parse_env_file(path: Path | str) -> dict[str, str]:
    """Parse a local .env file.

    Returns:
        Mapping of variable names to values, or an empty mapping if the
        file does not exist.
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        logger.debug('No local .env file at "%s"', path)
        return {}
    values = parse_env_bytes(data)
    logger.debug('Parsed %d variable(s) from local .env at "%s"', len(values), path)
    return values
