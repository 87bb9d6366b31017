"""Three-tier environment variable precedence: OS > remote > local.

This module provides:
- EnvSink: Protocol for the environment the merge writes into
- OsEnvironSink: The live process environment (default)
- MemoryEnvSink: A dict-backed environment for tests and embedding
- apply_precedence: The merge itself

The OS key set must be captured before any file tier is applied, since
its only purpose is to let variables already present in the process
environment win over both .env tiers.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Protocol

from azure_venv.core.types import EnvSource

logger = logging.getLogger(__name__)

# Serializes merges that target the same process environment
_merge_lock = threading.Lock()


class EnvSink(Protocol):
    """Environment the precedence merge reads from and writes into."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def snapshot(self) -> dict[str, str]: ...


class OsEnvironSink:
    """EnvSink backed by os.environ."""

    def get(self, key: str) -> str | None:
        return os.environ.get(key)

    def set(self, key: str, value: str) -> None:
        os.environ[key] = value

    def snapshot(self) -> dict[str, str]:
        return dict(os.environ)


class MemoryEnvSink:
    """EnvSink backed by a plain dict."""

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._values)


@dataclass
class EnvLoadResult:
    """Outcome of a precedence merge.

    Attributes:
        variables: Final value of every key the merge touched.
        sources: Tier each key's final value came from.
        local_keys: Keys applied from the local .env.
        remote_keys: Keys applied from the remote .env.
        os_keys: Keys left untouched because the OS environment had them,
            in discovery order.
    """

    variables: dict[str, str] = field(default_factory=dict)
    sources: dict[str, EnvSource] = field(default_factory=dict)
    local_keys: list[str] = field(default_factory=list)
    remote_keys: list[str] = field(default_factory=list)
    os_keys: list[str] = field(default_factory=list)


def apply_precedence(
    os_keys: Iterable[str],
    local_env: Mapping[str, str],
    remote_env: Mapping[str, str],
    sink: EnvSink | None = None,
) -> EnvLoadResult:
    """Apply local then remote variables, never overriding OS variables.

    Local values are written first; remote values are written second and
    overwrite local ones. Keys in os_keys are skipped in both passes and
    their current live value is captured afterwards with source OS.

    Args:
        os_keys: Keys present in the OS environment before any .env was applied.
        local_env: Variables parsed from the local .env.
        remote_env: Variables parsed from the remote .env.
        sink: Environment to write into (defaults to os.environ).

    Returns:
        EnvLoadResult describing where each variable came from.
    """
    sink = sink or OsEnvironSink()
    protected = set(os_keys)
    result = EnvLoadResult()
    preserved: dict[str, None] = {}

    with _merge_lock:
        for source, values, applied in (
            (EnvSource.LOCAL, local_env, result.local_keys),
            (EnvSource.REMOTE, remote_env, result.remote_keys),
        ):
            for key, value in values.items():
                if key in protected:
                    logger.debug("Skipping %s var %s: set in OS environment", source.value, key)
                    preserved.setdefault(key, None)
                    continue
                sink.set(key, value)
                result.variables[key] = value
                result.sources[key] = source
                applied.append(key)
                logger.debug("Applied %s var %s", source.value, key)

        for key in preserved:
            live = sink.get(key)
            if live is not None:
                result.variables[key] = live
            result.sources[key] = EnvSource.OS
            result.os_keys.append(key)

    logger.info(
        "Applied %d local vars, %d remote vars, %d OS-preserved vars",
        len(result.local_keys),
        len(result.remote_keys),
        len(result.os_keys),
    )
    return result
