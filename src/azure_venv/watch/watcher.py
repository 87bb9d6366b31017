"""Polling change watcher for a blob prefix.

This module provides:
- BlobWatcher: Detects added/modified blobs by etag and applies them
- WatchHandle: Returned by BlobWatcher.start() to stop or wait on a session

Each poll lists the prefix, compares etags with the last known state,
transfers only the changed blobs, and re-applies the environment merge
when the remote .env changed. Polls are driven by a fixed-rate timer; the
first one fires one full interval after start(). At most one poll runs at
a time: a tick that finds a poll in progress is skipped.
"""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from azure_venv.core.types import SyncTarget
from azure_venv.env.loader import parse_env_bytes
from azure_venv.env.precedence import EnvLoadResult, apply_precedence
from azure_venv.sync.downloader import BlobDownloader, run_bounded
from azure_venv.sync.engine import SyncEngine, display_path, relative_local_path
from azure_venv.sync.manifest import ManifestManager, SyncManifest, manifest_path_for
from azure_venv.sync.types import (
    BlobContent,
    BlobInfo,
    ChangeType,
    WatchChangeEvent,
    env_blob_name,
)
from azure_venv.watch.timer import PollTimer, RepeatingTimer

if TYPE_CHECKING:
    from azure_venv.core.config import AzureVenvConfig
    from azure_venv.env.precedence import EnvSink
    from azure_venv.sync.types import ObjectStoreClient

logger = logging.getLogger(__name__)

TimerFactory = Callable[[float, Callable[[], None]], PollTimer]

_STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class WatchHandle:
    """Control handle for a running watch session."""

    def __init__(self, watcher: BlobWatcher) -> None:
        self._watcher = watcher

    @property
    def is_running(self) -> bool:
        """Check if the session is still running."""
        return self._watcher.is_running

    def stop(self) -> None:
        """Stop the session. Safe to call more than once."""
        self._watcher.stop()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the session stops.

        Returns:
            True if the session stopped, False if the timeout expired first.
        """
        return self._watcher.wait_stopped(timeout)


class BlobWatcher:
    """Watches a blob prefix for changes on a polling interval.

    Usage:
        watcher = BlobWatcher(config, client, os_keys, local_env, mode=SyncTarget.FILESYSTEM)
        watcher.seed_from_manifest(manifest)
        handle = watcher.start()
        ...
        handle.stop()

    Changes are always detected by etag, whatever the configured sync mode.
    """

    def __init__(
        self,
        config: AzureVenvConfig,
        client: ObjectStoreClient,
        os_env_snapshot: Iterable[str],
        local_env: Mapping[str, str],
        *,
        mode: SyncTarget | None = None,
        manifest_manager: ManifestManager | None = None,
        sink: EnvSink | None = None,
        on_change: Callable[[list[WatchChangeEvent]], None] | None = None,
        timer_factory: TimerFactory = RepeatingTimer,
    ) -> None:
        """Initialize the watcher.

        Args:
            config: Validated configuration.
            client: Blob store client for listing and downloading.
            os_env_snapshot: OS environment keys captured before any .env
                was applied. Reused unchanged for every env re-merge.
            local_env: Parsed local .env, treated as immutable for the session.
            mode: Where changed blobs go. Defaults to config.sync_target.
            manifest_manager: Manifest store (filesystem mode). Defaults to
                the manifest under config.root_dir.
            sink: Environment the merge writes into (defaults to os.environ).
            on_change: Called with each poll's non-empty list of changes.
            timer_factory: Builds the poll timer from (interval, callback).
        """
        self._config = config
        self._client = client
        self._os_keys = frozenset(os_env_snapshot)
        self._local_env = dict(local_env)
        self._mode = SyncTarget(mode or config.sync_target)
        self._manifest_manager = manifest_manager or ManifestManager(
            manifest_path_for(config.root_dir)
        )
        self._sink = sink
        self._on_change = on_change
        self._timer_factory = timer_factory

        self._engine = SyncEngine(client)
        self._downloader = BlobDownloader(client, config.concurrency, config.max_blob_size)

        self._known_etags: dict[str, str] = {}
        self._manifest: SyncManifest | None = None
        self._blobs: dict[str, BlobContent] = {}
        self._last_env_result: EnvLoadResult | None = None

        self._poll_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._stopped = threading.Event()
        self._cancel_event: threading.Event | None = None
        self._timer: PollTimer | None = None
        self._previous_handlers: dict[int, Any] = {}

    @property
    def mode(self) -> SyncTarget:
        """Get the sync target changed blobs are written to."""
        return self._mode

    @property
    def is_running(self) -> bool:
        """Check if the watcher has been started and not stopped."""
        return self._timer is not None and not self._stopped.is_set()

    @property
    def known_etags(self) -> dict[str, str]:
        """Get a copy of the last known etag per blob name."""
        return dict(self._known_etags)

    @property
    def blobs(self) -> list[BlobContent]:
        """Get the in-memory blobs (memory mode), sorted by relative path."""
        return sorted(self._blobs.values(), key=lambda b: b.relative_path)

    @property
    def last_env_result(self) -> EnvLoadResult | None:
        """Get the result of the most recent env re-merge, if any."""
        return self._last_env_result

    def seed_from_manifest(self, manifest: SyncManifest) -> None:
        """Seed known etags from a manifest (filesystem mode)."""
        self._manifest = manifest
        self._known_etags = {name: entry.etag for name, entry in manifest.entries.items()}
        logger.debug("Watcher seeded with %d etag(s) from manifest", len(self._known_etags))

    def set_initial_etags(self, blobs: Iterable[BlobContent]) -> None:
        """Seed known etags and content from an in-memory read (memory mode)."""
        self._blobs = {b.blob_name: b for b in blobs}
        self._known_etags = {name: b.etag for name, b in self._blobs.items()}
        logger.debug("Watcher seeded with %d etag(s) from memory", len(self._known_etags))

    def start(
        self,
        poll_interval: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> WatchHandle:
        """Start polling.

        Args:
            poll_interval: Seconds between polls. Defaults to config.poll_interval.
            cancel_event: Optional external event; once set, the watcher
                stops at the next tick.

        Returns:
            WatchHandle for stopping or waiting on the session.

        Raises:
            RuntimeError: If the watcher was already started or stopped.
        """
        interval = poll_interval if poll_interval is not None else self._config.poll_interval
        with self._state_lock:
            if self._stopped.is_set():
                raise RuntimeError("Watcher has been stopped")
            if self._timer is not None:
                raise RuntimeError("Watcher is already running")
            self._cancel_event = cancel_event
            self._timer = self._timer_factory(interval, self._on_tick)

        self._install_signal_handlers()
        self._timer.start()
        logger.info("Watch mode started, polling every %gs", interval)
        return WatchHandle(self)

    def stop(self) -> None:
        """Stop polling. Idempotent.

        A poll already transferring blobs finishes its in-flight transfers;
        blobs it has not started yet are skipped.
        """
        with self._state_lock:
            if self._stopped.is_set():
                return
            self._stopped.set()
            timer = self._timer

        if timer is not None:
            timer.stop()
        self._restore_signal_handlers()
        logger.info("Watch mode stopped")

    def wait_stopped(self, timeout: float | None = None) -> bool:
        """Block until stop() has been called."""
        return self._stopped.wait(timeout)

    def _cancelled(self) -> bool:
        if self._stopped.is_set():
            return True
        return self._cancel_event is not None and self._cancel_event.is_set()

    def _on_tick(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            self.stop()
            return
        self.poll()

    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, signal handlers not installed")
            return
        for signum in _STOP_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)

    def _restore_signal_handlers(self) -> None:
        if not self._previous_handlers:
            return
        if threading.current_thread() is not threading.main_thread():
            # Only the main thread may change handlers; ours stay harmless after stop
            return
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def _handle_signal(self, signum: int, frame: object) -> None:
        logger.info("Received signal %d, stopping watch mode", signum)
        self.stop()

    def poll(self) -> list[WatchChangeEvent]:
        """Run one poll cycle.

        Returns:
            The changes detected by this poll. Empty if nothing changed, the
            watcher is stopped, another poll is in progress, or the poll failed.
        """
        if not self._poll_lock.acquire(blocking=False):
            logger.debug("Watch poll skipped: previous poll still in progress")
            return []
        try:
            if self._cancelled():
                return []
            return self._poll_once()
        except Exception as e:
            logger.error("Watch poll failed: %s", e)
            return []
        finally:
            self._poll_lock.release()

    def _poll_once(self) -> list[WatchChangeEvent]:
        logger.debug("Watch poll cycle starting")
        prefix = self._config.prefix
        blobs = self._client.list_blobs(prefix)
        if self._cancelled():
            return []

        env_name = env_blob_name(prefix)
        file_changes: list[tuple[ChangeType, BlobInfo]] = []
        env_change: tuple[ChangeType, BlobInfo] | None = None

        for blob in blobs:
            known = self._known_etags.get(blob.name)
            if known == blob.etag:
                continue
            change_type = ChangeType.ADDED if known is None else ChangeType.MODIFIED
            if blob.name == env_name:
                env_change = (change_type, blob)
            else:
                file_changes.append((change_type, blob))

        if not file_changes and env_change is None:
            logger.debug("Watch poll: no changes detected")
            return []

        detected = len(file_changes) + (1 if env_change else 0)
        logger.info("Watch poll: detected %d change(s)", detected)

        events: list[WatchChangeEvent] = []
        if file_changes:
            events.extend(self._apply_file_changes(file_changes, prefix))

        if env_change is not None and not self._cancelled():
            if self._apply_env_change(env_change[1]):
                events.append(self._event(env_change[0], env_change[1], prefix))

        added = sum(1 for e in events if e.type is ChangeType.ADDED)
        logger.info(
            "Watch poll complete: %d added, %d modified", added, len(events) - added
        )

        if events and self._on_change is not None:
            try:
                self._on_change(events)
            except Exception:
                logger.exception("Change callback failed")
        return events

    @staticmethod
    def _event(
        change_type: ChangeType,
        blob: BlobInfo,
        prefix: str,
        content: BlobContent | None = None,
    ) -> WatchChangeEvent:
        return WatchChangeEvent(
            type=change_type,
            blob_name=blob.name,
            relative_path=display_path(blob.name, prefix),
            timestamp=datetime.now(timezone.utc),
            blob=content,
        )

    def _apply_file_changes(
        self, changes: list[tuple[ChangeType, BlobInfo]], prefix: str
    ) -> list[WatchChangeEvent]:
        """Transfer changed blobs. Only successes update known etags."""
        types = {blob.name: change_type for change_type, blob in changes}
        changed = [blob for _, blob in changes]
        events = []

        if self._mode is SyncTarget.MEMORY:
            contents = run_bounded(
                changed,
                lambda blob: self._engine.read_blob(blob, prefix),
                self._config.concurrency,
                cancel_check=self._cancelled,
                name="WatchReader",
            )
            by_name = {blob.name: blob for blob in changed}
            for content in contents:
                self._blobs[content.blob_name] = content
                self._known_etags[content.blob_name] = content.etag
                blob = by_name[content.blob_name]
                events.append(self._event(types[blob.name], blob, prefix, content))
            logger.info(
                "Watch poll: read %d/%d changed blob(s) to memory", len(contents), len(changed)
            )
            return events

        results = self._downloader.download_batch(
            changed, self._config.root_dir, prefix, cancel_check=self._cancelled
        )
        if not results:
            return events

        if self._manifest is None:
            self._manifest = self._manifest_manager.load()
        by_name = {blob.name: blob for blob in changed}
        for result in results:
            blob = by_name[result.blob_name]
            self._manifest.entries[blob.name] = self._manifest_manager.create_entry(
                blob, relative_local_path(result.local_path, self._config.root_dir)
            )
            self._known_etags[blob.name] = blob.etag
            events.append(self._event(types[blob.name], blob, prefix))
        self._manifest_manager.save(self._manifest)
        return events

    def _apply_env_change(self, blob: BlobInfo) -> bool:
        """Re-fetch the remote .env and re-run the precedence merge."""
        logger.info("Watch poll: remote .env changed, re-applying environment variables")
        try:
            remote_env = parse_env_bytes(self._client.download_to_bytes(blob.name))
        except Exception as e:
            logger.error("Watch poll: failed to re-apply remote .env: %s", e)
            return False

        logger.info("Watch poll: parsed %d variable(s) from remote .env", len(remote_env))
        self._last_env_result = apply_precedence(
            self._os_keys, self._local_env, remote_env, self._sink
        )
        self._known_etags[blob.name] = blob.etag
        return True
