"""Env module - .env parsing and precedence merge."""

from azure_venv.env.loader import parse_env_bytes, parse_env_file
from azure_venv.env.precedence import (
    EnvLoadResult,
    EnvSink,
    MemoryEnvSink,
    OsEnvironSink,
    apply_precedence,
)

__all__ = [
    "EnvLoadResult",
    "EnvSink",
    "MemoryEnvSink",
    "OsEnvironSink",
    "apply_precedence",
    "parse_env_bytes",
    "parse_env_file",
]
