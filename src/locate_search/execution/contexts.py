"""
Execution contexts for local and remote command resolution.

A context knows how to find an executable, check whether a file exists and
turn a shell command line into an argument vector, all in terms of paths as
they are understood inside that context (see ``paths.to_local_form``).
"""

import asyncio
import logging
import os
import re
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from ..config import LocateConfig
from ..exceptions import LocateSearchError
from .paths import RemotePath, is_remote, parse_remote_path
from .ssh import CommandResult, SshRemoteExecutor

logger = logging.getLogger(__name__)

_WHICH_LINE_RE = re.compile(r"^(.+)$", re.MULTILINE)


@dataclass
class LaunchSpec:
    """How to start a command line in an execution context."""

    argv: List[str]
    cwd: Optional[str] = None


class ExecutionContext(ABC):
    """Environment in which commands are resolved and run.

    Lookups are coroutines so that a slow remote channel never blocks the
    event loop that drives the spawned stages.
    """

    @property
    @abstractmethod
    def is_remote(self) -> bool:
        """True when commands run on another host."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human readable name of the context."""

    @abstractmethod
    async def find_executable(self, name: str) -> Optional[str]:
        """Locate ``name`` on the context's executable search path."""

    @abstractmethod
    async def file_exists(self, path: str) -> bool:
        """Check whether ``path`` exists in this context."""

    @abstractmethod
    def launch_spec(self, command_line: str, cwd: Optional[str] = None) -> LaunchSpec:
        """Argument vector running ``command_line`` through a shell."""


class LocalExecutionContext(ExecutionContext):
    """Runs commands on this machine."""

    def __init__(self, shell: str = "/bin/sh"):
        self.shell = shell

    @property
    def is_remote(self) -> bool:
        return False

    @property
    def name(self) -> str:
        return "local"

    async def find_executable(self, name: str) -> Optional[str]:
        return shutil.which(name)

    async def file_exists(self, path: str) -> bool:
        return os.path.exists(path)

    def launch_spec(self, command_line: str, cwd: Optional[str] = None) -> LaunchSpec:
        if cwd is not None and not os.path.isdir(cwd):
            cwd = None
        return LaunchSpec([self.shell, "-c", command_line], cwd)


class RemoteExecutionContext(ExecutionContext):
    """Runs commands on a remote host through a remote executor.

    The executor blocks, so each command runs in the loop's default thread
    pool. Commands over one context are serialized.
    """

    def __init__(self, remote_path: RemotePath, executor: SshRemoteExecutor):
        self.remote_path = remote_path
        self.executor = executor
        self._channel_lock: Optional[asyncio.Lock] = None

    @property
    def is_remote(self) -> bool:
        return True

    @property
    def name(self) -> str:
        return self.remote_path.prefix

    async def find_executable(self, name: str) -> Optional[str]:
        result = await self._run_command(f"which {name}")
        if result.returncode != 0:
            return None
        match = _WHICH_LINE_RE.search(result.stdout)
        return match.group(1) if match else None

    async def file_exists(self, path: str) -> bool:
        result = await self._run_command(f"test -e {path}")
        return result.returncode == 0

    def launch_spec(self, command_line: str, cwd: Optional[str] = None) -> LaunchSpec:
        if cwd:
            command_line = f"cd {cwd} && {command_line}"
        return LaunchSpec(self.executor.command_argv(command_line))

    async def _run_command(self, command_line: str) -> CommandResult:
        if self._channel_lock is None:
            self._channel_lock = asyncio.Lock()
        async with self._channel_lock:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(
                None, self.executor.run_command, command_line
            )


def create_execution_context(path: str, config: LocateConfig) -> ExecutionContext:
    """Select the execution context for ``path`` (remote-tagged or local)."""
    if not is_remote(path):
        return LocalExecutionContext(shell=config.shell)
    remote_path = parse_remote_path(path)
    executor = SshRemoteExecutor.for_path(remote_path, config.ssh)
    return RemoteExecutionContext(remote_path, executor)


async def find_executable(name: str, context: ExecutionContext) -> Optional[str]:
    """Resolve ``name`` in ``context``; returns None on any failure."""
    try:
        found = await context.find_executable(name)
    except (LocateSearchError, OSError) as e:
        logger.warning(f"Executable lookup for {name} in {context.name} failed: {e}")
        return None
    if found is None:
        logger.warning(f"{name} not found in {context.name} context")
    return found
