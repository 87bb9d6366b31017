"""Library entry points.

This module provides:
- init_azure_venv: Load .env tiers and run one sync pass
- watch_azure_venv: Same, then keep polling for changes
- SyncResult, EnvDetails, WatchResult: What the entry points return

Flow: snapshot the OS environment keys, load and apply the local .env
(never overriding OS keys), validate configuration, fetch the remote .env
and apply the three-tier precedence, then sync blobs to disk or memory.
The watcher is only built after the initial sync has returned, so the two
never race on the manifest.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from azure_venv.client.api import BlobStoreClient
from azure_venv.core.config import AzureVenvConfig, AzureVenvOptions, validate_config
from azure_venv.core.errors import AzureConnectionError, AzureVenvError, ErrorKind
from azure_venv.core.log import configure_logging, sanitize
from azure_venv.core.types import EnvSource, LogLevel, SyncTarget
from azure_venv.env.loader import parse_env_bytes, parse_env_file
from azure_venv.env.precedence import EnvLoadResult, EnvSink, OsEnvironSink, apply_precedence
from azure_venv.introspection import FileTreeNode, build_file_tree, files_from_manifest
from azure_venv.sync.engine import SyncEngine
from azure_venv.sync.manifest import ManifestManager, SyncManifest, manifest_path_for
from azure_venv.sync.types import BlobContent, ObjectStoreClient
from azure_venv.watch.watcher import BlobWatcher, WatchHandle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnvDetails:
    """Environment introspection data from the precedence merge."""

    variables: dict[str, str] = field(default_factory=dict)
    sources: dict[str, EnvSource] = field(default_factory=dict)
    local_keys: list[str] = field(default_factory=list)
    remote_keys: list[str] = field(default_factory=list)
    os_keys: list[str] = field(default_factory=list)

    @classmethod
    def from_load_result(cls, result: EnvLoadResult) -> EnvDetails:
        return cls(
            variables=dict(result.variables),
            sources=dict(result.sources),
            local_keys=list(result.local_keys),
            remote_keys=list(result.remote_keys),
            os_keys=list(result.os_keys),
        )


@dataclass(frozen=True)
class SyncResult:
    """Outcome of init_azure_venv.

    Attributes:
        attempted: False if AZURE_VENV was not configured.
        total_blobs: Blobs found under the prefix (excluding .env).
        downloaded: Blobs written to disk or read into memory.
        skipped: Blobs unchanged since the last sync (incremental mode).
        failed: Blobs that failed to transfer.
        failed_blobs: Names of the failed blobs.
        duration: Wall time in seconds.
        remote_env_loaded: Whether a remote .env was found and applied.
        env_sources: Tier each environment variable came from.
        blobs: In-memory blob contents (memory mode), sorted by path.
        file_tree: Hierarchical view of the synced files.
        env_details: Full precedence merge details.
    """

    attempted: bool = True
    total_blobs: int = 0
    downloaded: int = 0
    skipped: int = 0
    failed: int = 0
    failed_blobs: list[str] = field(default_factory=list)
    duration: float = 0.0
    remote_env_loaded: bool = False
    env_sources: dict[str, EnvSource] = field(default_factory=dict)
    blobs: list[BlobContent] = field(default_factory=list)
    file_tree: list[FileTreeNode] = field(default_factory=list)
    env_details: EnvDetails = field(default_factory=EnvDetails)


NO_OP_SYNC_RESULT = SyncResult(attempted=False)


def _no_op() -> None:
    pass


@dataclass(frozen=True)
class WatchResult:
    """Outcome of watch_azure_venv.

    Attributes:
        initial_sync: Result of the sync that ran before watching started.
        stop: Stops the watcher and releases its client. No-op when
            watching did not start.
        handle: Watch session handle, or None when watching did not start.
    """

    initial_sync: SyncResult
    stop: Callable[[], None] = _no_op
    handle: WatchHandle | None = None


def _failed_result(start: float) -> SyncResult:
    return SyncResult(attempted=True, duration=time.monotonic() - start)


def _load_local_env(
    options: AzureVenvOptions, os_keys: set[str], sink: EnvSink
) -> dict[str, str]:
    """Parse the local .env and apply it without overriding OS keys."""
    root_dir = Path(options.root_dir or Path.cwd())
    local_env = parse_env_file(root_dir / (options.env_path or ".env"))
    for key, value in local_env.items():
        if key not in os_keys:
            sink.set(key, value)
    return local_env


def _degrade(error: AzureVenvError, config: AzureVenvConfig, start: float) -> SyncResult:
    """Decide whether a sync failure propagates or yields a failed result.

    Must be called from inside the except block handling the error.
    """
    match error.kind:
        case ErrorKind.CONFIGURATION | ErrorKind.AUTH:
            raise error
        case ErrorKind.CONNECTIVITY | ErrorKind.NOT_FOUND | ErrorKind.SYNC | ErrorKind.TRAVERSAL:
            if config.fail_on_error:
                raise error
            logger.warning("Azure sync failed (fail_on_error=false): %s", error.message)
            return _failed_result(start)


@dataclass
class _Session:
    """Everything the watcher needs from the initial sync."""

    config: AzureVenvConfig
    client: ObjectStoreClient
    os_keys: set[str]
    local_env: dict[str, str]
    result: SyncResult
    manifest: SyncManifest | None = None
    ok: bool = True


def _sync(
    config: AzureVenvConfig,
    client: ObjectStoreClient,
    os_keys: set[str],
    local_env: dict[str, str],
    sink: EnvSink,
    start: float,
) -> _Session:
    engine = SyncEngine(client)

    remote_env: dict[str, str] = {}
    remote_bytes = engine.fetch_remote_env(config.prefix)
    if remote_bytes is not None:
        remote_env = parse_env_bytes(remote_bytes)
        logger.info("Parsed %d variable(s) from remote .env", len(remote_env))

    env_result = apply_precedence(os_keys, local_env, remote_env, sink)
    env_details = EnvDetails.from_load_result(env_result)

    manifest = None
    if config.sync_target is SyncTarget.MEMORY:
        read = engine.read_blobs(config)
        result = SyncResult(
            total_blobs=read.total_blobs,
            downloaded=len(read.blobs),
            failed=read.failed,
            failed_blobs=read.failed_blobs,
            duration=time.monotonic() - start,
            remote_env_loaded=remote_bytes is not None,
            env_sources=env_details.sources,
            blobs=read.blobs,
            file_tree=build_file_tree(read.blobs),
            env_details=env_details,
        )
    else:
        synced = engine.sync(config)
        manifest = ManifestManager(manifest_path_for(config.root_dir)).load()
        result = SyncResult(
            total_blobs=synced.total_blobs,
            downloaded=synced.downloaded,
            skipped=synced.skipped,
            failed=synced.failed,
            failed_blobs=synced.failed_blobs,
            duration=time.monotonic() - start,
            remote_env_loaded=remote_bytes is not None,
            env_sources=env_details.sources,
            file_tree=build_file_tree(files_from_manifest(manifest)),
            env_details=env_details,
        )

    logger.info(
        "Azure VENV sync complete: %d downloaded, %d skipped, %d failed in %.0fms",
        result.downloaded,
        result.skipped,
        result.failed,
        result.duration * 1000,
    )
    return _Session(config, client, os_keys, local_env, result, manifest)


def _run(
    options: AzureVenvOptions | None,
    sink: EnvSink | None,
    client: ObjectStoreClient | None,
    watch: bool,
) -> tuple[_Session | None, Callable[[], None]]:
    """Shared initialization. Returns the session and a client closer."""
    start = time.monotonic()
    options = options or AzureVenvOptions()
    sink = sink or OsEnvironSink()

    # OS keys must be captured before any .env tier touches the environment
    os_keys = set(sink.snapshot())

    configure_logging(options.log_level or LogLevel.INFO)
    logger.info("Initializing azure-venv%s", " (watch mode)" if watch else "")

    local_env = _load_local_env(options, os_keys, sink)

    config = validate_config(sink.snapshot(), options)
    if config is None:
        logger.info("AZURE_VENV not configured, skipping Azure sync")
        return None, _no_op

    configure_logging(config.log_level, config.sas_token)
    logger.info("Azure VENV configured, starting sync")
    logger.debug("Blob URL: %s/%s", config.blob_url.account_url, config.blob_url.container_name)
    logger.debug('Prefix: "%s"', config.prefix)
    logger.debug("Concurrency: %d", config.concurrency)

    close: Callable[[], None] = _no_op
    if client is None:
        store = BlobStoreClient(
            config.blob_url.account_url,
            config.blob_url.container_name,
            config.sas_token,
            timeout=config.timeout,
        )
        client, close = store, store.close

    try:
        return _sync(config, client, os_keys, local_env, sink, start), close
    except AzureVenvError as e:
        close()
        failed = _degrade(e, config, start)
    except Exception as e:
        close()
        error = AzureConnectionError(
            f"Unexpected error during Azure sync: {sanitize(str(e), config.sas_token)}"
        )
        if config.fail_on_error:
            raise error from e
        logger.warning("Azure sync failed with unexpected error (fail_on_error=false): %s", error)
        failed = _failed_result(start)
    return _Session(config, client, os_keys, local_env, failed, ok=False), _no_op


def init_azure_venv(
    options: AzureVenvOptions | None = None,
    *,
    sink: EnvSink | None = None,
    client: ObjectStoreClient | None = None,
) -> SyncResult:
    """Load environment tiers and sync blobs once.

    Args:
        options: Programmatic overrides of AZURE_VENV_* settings.
        sink: Environment to read and write (defaults to os.environ).
        client: Blob store client. Built from the configuration when omitted.

    Returns:
        SyncResult. NO_OP_SYNC_RESULT when AZURE_VENV is not configured.

    Raises:
        ConfigurationError: If the configuration is partial or invalid.
        AuthenticationError: If the SAS token is expired or rejected.
        AzureVenvError: Other sync failures, only when fail_on_error is set.
    """
    session, close = _run(options, sink, client, watch=False)
    close()
    return NO_OP_SYNC_RESULT if session is None else session.result


def watch_azure_venv(
    options: AzureVenvOptions | None = None,
    *,
    poll_interval: float | None = None,
    cancel_event: threading.Event | None = None,
    sink: EnvSink | None = None,
    client: ObjectStoreClient | None = None,
) -> WatchResult:
    """Sync once, then watch for changes.

    Watching starts when AZURE_VENV_WATCH_ENABLED (or options.watch_enabled)
    is set, or when poll_interval is given. It never starts after a failed
    initial sync.

    Args:
        options: Programmatic overrides of AZURE_VENV_* settings.
        poll_interval: Seconds between polls, overriding the configuration.
        cancel_event: Optional event that stops the watcher once set.
        sink: Environment to read and write (defaults to os.environ).
        client: Blob store client. Built from the configuration when omitted.

    Returns:
        WatchResult with the initial sync and a stop function.

    Raises:
        Same as init_azure_venv.
    """
    session, close = _run(options, sink, client, watch=True)
    if session is None:
        return WatchResult(initial_sync=NO_OP_SYNC_RESULT)

    config = session.config
    if not session.ok:
        return WatchResult(initial_sync=session.result)

    if not (config.watch_enabled or poll_interval is not None):
        logger.debug("Watch mode not enabled")
        close()
        return WatchResult(initial_sync=session.result)

    watcher = BlobWatcher(
        config,
        session.client,
        session.os_keys,
        session.local_env,
        mode=config.sync_target,
        sink=sink,
    )
    if config.sync_target is SyncTarget.MEMORY:
        watcher.set_initial_etags(session.result.blobs)
    elif session.manifest is not None:
        watcher.seed_from_manifest(session.manifest)

    handle = watcher.start(poll_interval=poll_interval, cancel_event=cancel_event)

    def stop() -> None:
        handle.stop()
        close()

    return WatchResult(initial_sync=session.result, stop=stop, handle=handle)
