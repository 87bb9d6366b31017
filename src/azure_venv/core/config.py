"""Configuration for azure-venv.

Configuration is read from environment variables (AZURE_VENV_*) and may be
overridden programmatically with AzureVenvOptions. Resolution order is
options > environment > defaults.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

from azure_venv.core.errors import AuthenticationError, ConfigurationError
from azure_venv.core.types import LogLevel, SyncMode, SyncTarget

logger = logging.getLogger(__name__)

BLOB_HOST_SUFFIX = ".blob.core.windows.net"

DEFAULT_CONCURRENCY = 5
DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_MAX_BLOB_SIZE = 100 * 1024 * 1024  # 100 MiB
DEFAULT_POLL_INTERVAL_MS = 30_000
SAS_EXPIRY_WARNING = timedelta(days=7)

_INTEGER_RE = re.compile(r"^\d+$")


@dataclass(frozen=True)
class ParsedBlobUrl:
    """Components of the AZURE_VENV URL.

    Given ``https://acct.blob.core.windows.net/container/config/prod``:
        account_url: "https://acct.blob.core.windows.net"
        container_name: "container"
        prefix: "config/prod/"
    """

    account_url: str
    container_name: str
    prefix: str


@dataclass(frozen=True)
class AzureVenvConfig:
    """Fully resolved configuration.

    Attributes:
        blob_url: Parsed container URL.
        sas_token: SAS token without leading '?'. Never log this value.
        sas_expiry: Token expiry if known.
        sync_mode: FULL re-downloads everything, INCREMENTAL uses the manifest.
        sync_target: FILESYSTEM writes under root_dir, MEMORY keeps bytes.
        fail_on_error: Raise on blob service errors instead of degrading.
        concurrency: Maximum parallel blob downloads.
        timeout: Per-request timeout in seconds.
        log_level: Logging verbosity.
        root_dir: Directory blobs are synced into.
        env_path: Local .env path relative to root_dir.
        max_blob_size: Size threshold in bytes above which downloads stream.
        poll_interval: Watch polling interval in seconds.
        watch_enabled: Start the watcher after the initial sync.
    """

    blob_url: ParsedBlobUrl
    sas_token: str
    sas_expiry: datetime | None = None
    sync_mode: SyncMode = SyncMode.FULL
    sync_target: SyncTarget = SyncTarget.FILESYSTEM
    fail_on_error: bool = False
    concurrency: int = DEFAULT_CONCURRENCY
    timeout: float = DEFAULT_TIMEOUT_MS / 1000
    log_level: LogLevel = LogLevel.INFO
    root_dir: Path = Path(".")
    env_path: str = ".env"
    max_blob_size: int = DEFAULT_MAX_BLOB_SIZE
    poll_interval: float = DEFAULT_POLL_INTERVAL_MS / 1000
    watch_enabled: bool = False

    @property
    def prefix(self) -> str:
        """Get the blob prefix (virtual directory)."""
        return self.blob_url.prefix


@dataclass
class AzureVenvOptions:
    """Programmatic overrides. Unset (None) fields fall back to the environment.

    Time values (timeout, poll_interval) are in seconds.
    """

    root_dir: Path | str | None = None
    env_path: str | None = None
    sync_mode: SyncMode | str | None = None
    sync_target: SyncTarget | str | None = None
    fail_on_error: bool | None = None
    concurrency: int | None = None
    timeout: float | None = None
    log_level: LogLevel | str | None = None
    max_blob_size: int | None = None
    poll_interval: float | None = None
    watch_enabled: bool | None = None


def parse_blob_url(url: str) -> ParsedBlobUrl:
    """Parse an AZURE_VENV URL into account URL, container and prefix.

    Args:
        url: ``https://<account>.blob.core.windows.net/<container>[/<prefix>]``

    Returns:
        ParsedBlobUrl. The prefix is empty or ends with '/', never starts with '/'.

    Raises:
        ConfigurationError: If the URL is malformed, not HTTPS, not a blob
            endpoint, or has no container.
    """
    try:
        parts = urlsplit(url)
    except ValueError as e:
        raise ConfigurationError(f'AZURE_VENV is not a valid URL: "{url}"', "AZURE_VENV") from e

    if not parts.scheme or not parts.hostname:
        raise ConfigurationError(f'AZURE_VENV is not a valid URL: "{url}"', "AZURE_VENV")

    if parts.scheme != "https":
        raise ConfigurationError(
            f'AZURE_VENV must use HTTPS scheme, got "{parts.scheme}:"', "AZURE_VENV"
        )

    if not parts.hostname.endswith(BLOB_HOST_SUFFIX):
        raise ConfigurationError(
            f'AZURE_VENV host must end with "{BLOB_HOST_SUFFIX}", got "{parts.hostname}"',
            "AZURE_VENV",
        )

    segments = [s for s in parts.path.split("/") if s]
    if not segments:
        raise ConfigurationError(
            "AZURE_VENV URL must contain a container name in the path", "AZURE_VENV"
        )

    prefix = "/".join(segments[1:]) + "/" if len(segments) > 1 else ""
    return ParsedBlobUrl(
        account_url=f"https://{parts.hostname}",
        container_name=segments[0],
        prefix=prefix,
    )


def _parse_datetime(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_sas_expiry(expiry_env: str | None, sas_token: str) -> datetime | None:
    """Determine the SAS expiry.

    Prefers AZURE_VENV_SAS_EXPIRY, then the token's ``se`` parameter.
    """
    if expiry_env:
        parsed = _parse_datetime(expiry_env)
        if parsed is not None:
            return parsed

    se_values = parse_qs(sas_token).get("se")
    if se_values:
        return _parse_datetime(se_values[0])
    return None


def check_sas_expiry(expiry: datetime | None, now: datetime | None = None) -> None:
    """Raise if the SAS token has expired; warn if it expires within 7 days.

    Raises:
        AuthenticationError: If the expiry is in the past.
    """
    if expiry is None:
        return

    now = now or datetime.now(timezone.utc)
    if expiry <= now:
        raise AuthenticationError(
            f"SAS token has expired (expiry: {expiry.isoformat()})", expiry
        )
    if expiry - now <= SAS_EXPIRY_WARNING:
        logger.warning("SAS token expires within 7 days (expiry: %s)", expiry.isoformat())


def _bounded_int(
    env: dict[str, str],
    name: str,
    default: int,
    minimum: int,
    maximum: int | None = None,
) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    if not _INTEGER_RE.match(raw):
        raise ConfigurationError(
            f"Configuration validation failed: {name} must be a positive integer", name
        )
    value = int(raw)
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f"between {minimum} and {maximum}" if maximum else f"at least {minimum}"
        raise ConfigurationError(
            f"Configuration validation failed: {name} must be {bounds}", name
        )
    return value


def _bool_flag(env: dict[str, str], name: str) -> bool:
    raw = env.get(name)
    if raw is None or raw == "":
        return False
    if raw not in ("true", "false"):
        raise ConfigurationError(
            f"Configuration validation failed: {name} must be 'true' or 'false'", name
        )
    return raw == "true"


def _choice(env: dict[str, str], name: str, enum_type: type, default: object) -> object:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return enum_type(raw)
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_type)
        raise ConfigurationError(
            f"Configuration validation failed: {name} must be one of {allowed}", name
        ) from e


def validate_config(
    env: dict[str, str] | None = None,
    options: AzureVenvOptions | None = None,
) -> AzureVenvConfig | None:
    """Validate AZURE_VENV configuration from the environment.

    Args:
        env: Environment mapping (defaults to os.environ).
        options: Programmatic overrides.

    Returns:
        None if neither AZURE_VENV nor AZURE_VENV_SAS_TOKEN is set (the
        library is not configured), otherwise the resolved config.

    Raises:
        ConfigurationError: If the configuration is partial or invalid.
        AuthenticationError: If the SAS token has expired.
    """
    env = dict(os.environ if env is None else env)
    options = options or AzureVenvOptions()

    azure_venv = env.get("AZURE_VENV")
    sas_token = env.get("AZURE_VENV_SAS_TOKEN")

    if not azure_venv:
        if not sas_token:
            return None
        raise ConfigurationError(
            "AZURE_VENV_SAS_TOKEN is set but AZURE_VENV is missing. Both must be provided.",
            "AZURE_VENV",
        )
    if not sas_token:
        raise ConfigurationError(
            "AZURE_VENV is set but AZURE_VENV_SAS_TOKEN is missing. Both must be provided.",
            "AZURE_VENV_SAS_TOKEN",
        )

    blob_url = parse_blob_url(azure_venv)
    sas_token = sas_token[1:] if sas_token.startswith("?") else sas_token
    if not sas_token:
        raise ConfigurationError(
            "AZURE_VENV_SAS_TOKEN must not be empty", "AZURE_VENV_SAS_TOKEN"
        )

    expiry_env = env.get("AZURE_VENV_SAS_EXPIRY")
    if expiry_env and _parse_datetime(expiry_env) is None:
        raise ConfigurationError(
            "Configuration validation failed: AZURE_VENV_SAS_EXPIRY must be an ISO 8601 datetime",
            "AZURE_VENV_SAS_EXPIRY",
        )
    sas_expiry = parse_sas_expiry(expiry_env, sas_token)
    check_sas_expiry(sas_expiry)

    sync_mode = _choice(env, "AZURE_VENV_SYNC_MODE", SyncMode, SyncMode.FULL)
    sync_target = _choice(env, "AZURE_VENV_SYNC_TARGET", SyncTarget, SyncTarget.FILESYSTEM)
    log_level = _choice(env, "AZURE_VENV_LOG_LEVEL", LogLevel, LogLevel.INFO)
    fail_on_error = _bool_flag(env, "AZURE_VENV_FAIL_ON_ERROR")
    watch_enabled = _bool_flag(env, "AZURE_VENV_WATCH_ENABLED")
    concurrency = _bounded_int(env, "AZURE_VENV_CONCURRENCY", DEFAULT_CONCURRENCY, 1, 50)
    timeout_ms = _bounded_int(env, "AZURE_VENV_TIMEOUT", DEFAULT_TIMEOUT_MS, 1000, 300_000)
    max_blob_size = _bounded_int(
        env, "AZURE_VENV_MAX_BLOB_SIZE", DEFAULT_MAX_BLOB_SIZE, 1024 * 1024
    )
    poll_ms = _bounded_int(
        env, "AZURE_VENV_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_MS, 5000, 3_600_000
    )

    def pick(override: object, value: object) -> object:
        return value if override is None else override

    return AzureVenvConfig(
        blob_url=blob_url,
        sas_token=sas_token,
        sas_expiry=sas_expiry,
        sync_mode=SyncMode(pick(options.sync_mode, sync_mode)),
        sync_target=SyncTarget(pick(options.sync_target, sync_target)),
        fail_on_error=bool(pick(options.fail_on_error, fail_on_error)),
        concurrency=int(pick(options.concurrency, concurrency)),  # type: ignore[call-overload]
        timeout=float(pick(options.timeout, timeout_ms / 1000)),  # type: ignore[arg-type]
        log_level=LogLevel(pick(options.log_level, log_level)),
        root_dir=Path(options.root_dir or Path.cwd()).resolve(),
        env_path=options.env_path or ".env",
        max_blob_size=int(pick(options.max_blob_size, max_blob_size)),  # type: ignore[call-overload]
        poll_interval=float(pick(options.poll_interval, poll_ms / 1000)),  # type: ignore[arg-type]
        watch_enabled=bool(pick(options.watch_enabled, watch_enabled)),
    )
