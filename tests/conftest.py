"""
Shared pytest fixtures for Locate Search tests.

Provides fake execution contexts, a recording process orchestrator and
fake remote executors so pipeline behaviour can be tested without running
updatedb, locate or ssh.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

import pytest

from locate_search.config import LocateConfig
from locate_search.execution.contexts import ExecutionContext, LaunchSpec
from locate_search.execution.ssh import CommandResult
from locate_search.services.search_pipeline import SearchContext, SearchPipeline
from locate_search.services.surface import ResultSurface


class FakeExecutionContext(ExecutionContext):
    """Execution context answering lookups from in-memory tables."""

    def __init__(
        self,
        executables: Optional[Dict[str, str]] = None,
        existing: Iterable[str] = (),
        remote: bool = False,
    ):
        self.executables = dict(executables or {})
        self.existing = set(existing)
        self.remote = remote
        self.lookups: List[str] = []
        self.exists_checks: List[str] = []
        self.exists_error: Optional[Exception] = None

    @property
    def is_remote(self) -> bool:
        return self.remote

    @property
    def name(self) -> str:
        return "fake-remote" if self.remote else "fake-local"

    async def find_executable(self, name: str) -> Optional[str]:
        self.lookups.append(name)
        return self.executables.get(name)

    async def file_exists(self, path: str) -> bool:
        self.exists_checks.append(path)
        if self.exists_error is not None:
            raise self.exists_error
        return path in self.existing

    def launch_spec(self, command_line: str, cwd: Optional[str] = None) -> LaunchSpec:
        return LaunchSpec(["/bin/sh", "-c", command_line], cwd)


@dataclass
class SpawnRecord:
    """One spawn request seen by the FakeOrchestrator."""

    execution_context: ExecutionContext
    command_line: str
    surface: ResultSurface
    on_chunk: Callable[[str], None]
    on_exit: Callable[[int], None]
    cwd: Optional[str] = None
    returncode: Optional[int] = None
    chunks: List[str] = field(default_factory=list)

    def finish(self, exit_code: int = 0, output: Iterable[str] = ()) -> None:
        """Deliver ``output`` chunks then the exit status, like a real process."""
        for chunk in output:
            self.chunks.append(chunk)
            self.on_chunk(chunk)
        self.returncode = exit_code
        if self.surface.process is self:
            self.surface.process = None
        self.on_exit(exit_code)


class FakeOrchestrator:
    """Records spawns; the test decides when and how each process ends."""

    def __init__(self):
        self.spawned: List[SpawnRecord] = []

    def spawn(self, execution_context, command_line, surface, on_chunk, on_exit, cwd=None):
        record = SpawnRecord(
            execution_context, command_line, surface, on_chunk, on_exit, cwd
        )
        surface.process = record
        surface.execution_context = execution_context
        self.spawned.append(record)
        return record

    async def wait_idle(self):
        return None


class FakeRemoteExecutor:
    """Stands in for SshRemoteExecutor, answering commands from a table."""

    def __init__(self, responses: Optional[Dict[str, CommandResult]] = None):
        self.responses = dict(responses or {})
        self.commands: List[str] = []
        self.error: Optional[Exception] = None

    def run_command(self, command_line: str, timeout=None) -> CommandResult:
        self.commands.append(command_line)
        if self.error is not None:
            raise self.error
        return self.responses.get(command_line, CommandResult(1, ""))

    def command_argv(self, command_line: str) -> List[str]:
        return ["ssh", "fake-host", command_line]


@pytest.fixture
def fake_context() -> FakeExecutionContext:
    return FakeExecutionContext(
        executables={
            "updatedb": "/usr/bin/updatedb",
            "locate": "/usr/bin/locate",
        }
    )


@pytest.fixture
def fake_orchestrator() -> FakeOrchestrator:
    return FakeOrchestrator()


@pytest.fixture
def confirmations() -> List[str]:
    return []


@pytest.fixture
def make_pipeline(fake_context, fake_orchestrator, confirmations):
    """Factory building a pipeline around the fake context and orchestrator."""

    def _make(config: Optional[LocateConfig] = None, confirm: bool = True):
        context = SearchContext(
            config=config or LocateConfig(prunepaths=[".git"]),
            context_factory=lambda path, cfg: fake_context,
        )

        def _confirm(message: str) -> bool:
            confirmations.append(message)
            return confirm

        return SearchPipeline(context, fake_orchestrator, confirm=_confirm)

    return _make


@pytest.fixture
def fake_remote_executor() -> FakeRemoteExecutor:
    return FakeRemoteExecutor()


@pytest.fixture
def make_fake_context():
    """Factory for FakeExecutionContext with custom tables."""
    return FakeExecutionContext
