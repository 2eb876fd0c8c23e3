"""
Search pipeline: build the locate database if needed, then search it.

States of a surface::

    Idle -> Searching                    (database exists)
    Idle -> Building -> Searching        (database built, exit 0)
    Building -> Idle                     (updatedb failed)
    Searching -> Done                    (search pipeline exit 0)
    Searching -> Idle                    (search pipeline failed)
    Building | Searching -> ToolMissing  (executable not found)

Each spawned stage carries the transition for its own surface instance in
its exit callback, which schedules it on the event loop. There is no other
path from one stage to the next.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from ..config import LocateConfig
from ..exceptions import LocateSearchError
from ..execution.contexts import (
    ExecutionContext,
    create_execution_context,
    find_executable,
)
from ..execution.paths import is_remote, parse_remote_path, to_local_form
from ..models import IndexDatabase, SearchRequest, SurfaceState
from .commands import CommandBuilder, database_directory
from .process_orchestrator import ProcessOrchestrator
from .surface import IdentityKey, ResultSurface, SurfaceRegistry

logger = logging.getLogger(__name__)

NO_FILES_FOUND = "--- No files found ---"
TOOL_MISSING_SUFFIX = " not found !"

ConfirmCallback = Callable[[str], bool]
Transition = Callable[[ResultSurface, int], Awaitable[None]]


@dataclass
class SearchContext:
    """Session state owned by the caller of the pipeline."""

    config: LocateConfig = field(default_factory=LocateConfig)
    surfaces: SurfaceRegistry = field(default_factory=SurfaceRegistry)
    history: List[str] = field(default_factory=list)
    context_factory: Callable[[str, LocateConfig], ExecutionContext] = field(
        default=create_execution_context, repr=False
    )
    _execution_contexts: Dict[Optional[Tuple], ExecutionContext] = field(
        default_factory=dict, repr=False
    )

    def execution_context_for(self, path: str) -> ExecutionContext:
        """Local context, or the one remote context per (user, host, port)."""
        key = parse_remote_path(path).connection_key if is_remote(path) else None
        if key not in self._execution_contexts:
            self._execution_contexts[key] = self.context_factory(path, self.config)
        return self._execution_contexts[key]

    def remember(self, pattern: str) -> None:
        """Record ``pattern`` as the most recent search."""
        if pattern in self.history:
            self.history.remove(pattern)
        self.history.insert(0, pattern)

    def command_builder(self) -> CommandBuilder:
        return CommandBuilder(self.config.switches, self.config.prunepaths)


def _decline(message: str) -> bool:
    return False


class SearchPipeline:
    """Chains the build and search stages for one surface at a time."""

    def __init__(
        self,
        context: SearchContext,
        orchestrator: ProcessOrchestrator,
        confirm: Optional[ConfirmCallback] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.context = context
        self.orchestrator = orchestrator
        self.confirm = confirm or _decline
        self.clock = clock
        # Identity keys between "run requested" and "stage spawned"
        self._starting: Set[IdentityKey] = set()
        self._transitions: Set["asyncio.Task[None]"] = set()

    async def run(self, root_directory: str, pattern: str) -> Optional[ResultSurface]:
        """Search ``pattern`` in the locate database under ``root_directory``.

        Returns the surface showing the search, or None if the database is
        missing and the user declined to build it.
        """
        request = SearchRequest(IndexDatabase.for_root(root_directory), pattern)
        self.context.remember(pattern)

        key = request.identity_key
        existing = self.context.surfaces.find_existing(*key)
        if key in self._starting or (existing is not None and existing.busy):
            logger.warning(
                f"Search for {pattern!r} in {request.database.path} is still "
                f"running; not restarting it"
            )
            return existing

        self._starting.add(key)
        try:
            return await self._check_database(request)
        finally:
            self._starting.discard(key)

    async def wait_idle(self) -> None:
        """Wait until no stage is running or about to start."""
        while True:
            await self.orchestrator.wait_idle()
            if not self._transitions:
                return
            await asyncio.gather(*list(self._transitions), return_exceptions=True)

    async def _check_database(
        self, request: SearchRequest
    ) -> Optional[ResultSurface]:
        database_path = request.database.path
        execution_context = self.context.execution_context_for(database_path)
        try:
            exists = await execution_context.file_exists(to_local_form(database_path))
        except LocateSearchError as e:
            logger.warning(
                f"Cannot check {database_path} in {execution_context.name}: {e}"
            )
            surface = self._open_surface(request)
            surface.append_text(
                f"Cannot check locate database {database_path}: {e}\n"
            )
            surface.state = SurfaceState.IDLE
            return surface

        if exists:
            return await self._start_search(request, execution_context)

        if not self.confirm(
            f"Locate database {database_path} does not exist. Create it?"
        ):
            logger.info(f"Index build for {database_path} declined")
            return None
        return await self._start_build(request, execution_context)

    def _open_surface(self, request: SearchRequest) -> ResultSurface:
        root = request.database.directory_root
        return self.context.surfaces.create(
            request.database.path,
            request.pattern,
            refresh_hook=partial(self.run, root, request.pattern),
        )

    async def _start_build(
        self, request: SearchRequest, execution_context: ExecutionContext
    ) -> ResultSurface:
        surface = self._open_surface(request)
        surface.state = SurfaceState.BUILDING
        surface.append_text(f"Building locate database {request.database.path} ...\n")
        banner_end = len(surface)

        tool = self.context.config.updatedb_executable
        updatedb = await find_executable(tool, execution_context)
        if updatedb is None:
            return self._tool_missing(surface, tool)

        local_database = to_local_form(request.database.path)
        command_line = self.context.command_builder().index_command_line(
            updatedb, local_database
        )
        self._spawn_stage(
            surface,
            execution_context,
            command_line,
            partial(self._after_build, request, execution_context, banner_end),
        )
        return surface

    async def _after_build(
        self,
        request: SearchRequest,
        execution_context: ExecutionContext,
        banner_end: int,
        surface: ResultSurface,
        exit_code: int,
    ) -> None:
        if exit_code != 0:
            logger.warning(
                f"Index build for {request.database.path} exited with {exit_code}"
            )
            surface.state = SurfaceState.IDLE
            return
        if surface.closed:
            logger.debug(f"{surface.name} was closed during the build; not searching")
            surface.state = SurfaceState.IDLE
            return

        surface.truncate(banner_end)
        await self._start_search(request, execution_context)

    async def _start_search(
        self, request: SearchRequest, execution_context: ExecutionContext
    ) -> ResultSurface:
        surface = self._open_surface(request)
        surface.state = SurfaceState.SEARCHING
        surface.append_text(
            f'Matches for "{request.pattern}" in {request.database.path}:\n'
        )
        surface.move_view_to_results_start()

        tool = self.context.config.locate_executable
        locate = await find_executable(tool, execution_context)
        if locate is None:
            return self._tool_missing(surface, tool)

        command_line = self.context.command_builder().build_search_command(
            locate, to_local_form(request.database.path), request.pattern
        )
        self._spawn_stage(surface, execution_context, command_line, self._after_search)
        return surface

    async def _after_search(self, surface: ResultSurface, exit_code: int) -> None:
        if exit_code != 0:
            logger.warning(
                f"Search for {surface.pattern!r} in {surface.database_path} "
                f"exited with {exit_code}"
            )
            surface.state = SurfaceState.IDLE
            return

        if not surface.has_results:
            surface.append_text(f"{NO_FILES_FOUND}\n")
        finished = self.clock().strftime("%Y-%m-%d %H:%M:%S")
        surface.append_text(f"--- Search finished at {finished} ---\n")
        surface.state = SurfaceState.DONE

    def _spawn_stage(
        self,
        surface: ResultSurface,
        execution_context: ExecutionContext,
        command_line: str,
        transition: Transition,
    ) -> None:
        self.orchestrator.spawn(
            execution_context,
            command_line,
            surface,
            surface.append_text,
            partial(self._on_stage_exit, surface, transition),
            cwd=database_directory(to_local_form(surface.database_path)),
        )

    def _on_stage_exit(
        self, surface: ResultSurface, transition: Transition, exit_code: int
    ) -> None:
        logger.debug(f"{surface.name}: {surface.state.value} exited with {exit_code}")
        # Hold the key so a run cannot slip in before the next stage spawns
        key = None if surface.closed else surface.identity_key
        if key is not None:
            self._starting.add(key)
        task = asyncio.get_running_loop().create_task(
            self._advance(surface, transition, exit_code, key)
        )
        self._transitions.add(task)
        task.add_done_callback(self._transitions.discard)

    async def _advance(
        self,
        surface: ResultSurface,
        transition: Transition,
        exit_code: int,
        key: Optional[IdentityKey],
    ) -> None:
        try:
            await transition(surface, exit_code)
        except Exception:
            logger.exception(f"Stage transition failed for {surface.name}")
            surface.state = SurfaceState.IDLE
        finally:
            if key is not None:
                self._starting.discard(key)

    def _tool_missing(self, surface: ResultSurface, tool: str) -> ResultSurface:
        surface.append_text(f"{tool}{TOOL_MISSING_SUFFIX}\n")
        surface.state = SurfaceState.TOOL_MISSING
        return surface
