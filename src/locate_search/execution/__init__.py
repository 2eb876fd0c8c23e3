"""Execution contexts: where commands are resolved and run."""

from .contexts import (
    ExecutionContext,
    LocalExecutionContext,
    RemoteExecutionContext,
    create_execution_context,
    find_executable,
)
from .paths import RemotePath, is_remote, parse_remote_path, to_local_form

__all__ = [
    "ExecutionContext",
    "LocalExecutionContext",
    "RemoteExecutionContext",
    "RemotePath",
    "create_execution_context",
    "find_executable",
    "is_remote",
    "parse_remote_path",
    "to_local_form",
]
