"""Process orchestration: spawn a command and stream its output to a surface.

Processes run as independent OS processes; their output and exit are
delivered as callbacks on the event loop that spawned them, so callbacks
never overlap each other or the code that started the process.
"""

import asyncio
import codecs
import logging
import signal
import time
from typing import Callable, List, Optional

from ..exceptions import SurfaceBusyError
from ..execution.contexts import ExecutionContext
from .surface import ResultSurface

logger = logging.getLogger(__name__)

# Exit status reported when the process could not be started at all
SPAWN_FAILURE_EXIT_CODE = 127
# Reported when the process was killed because its task was cancelled
CANCELLED_EXIT_CODE = -signal.SIGKILL

ChunkCallback = Callable[[str], None]
ExitCallback = Callable[[int], None]


class RunningProcess:
    """A spawned process and the callbacks it feeds."""

    def __init__(
        self,
        command_line: str,
        execution_context: ExecutionContext,
        surface: Optional[ResultSurface],
        on_output_chunk: ChunkCallback,
        on_completion: ExitCallback,
    ):
        self.command_line = command_line
        self.execution_context = execution_context
        self.surface = surface
        self.on_output_chunk = on_output_chunk
        self.on_completion = on_completion
        self.handle: Optional[asyncio.subprocess.Process] = None
        self.task: Optional["asyncio.Task[None]"] = None
        self.returncode: Optional[int] = None
        self.started_at = time.time()

    @property
    def finished(self) -> bool:
        return self.returncode is not None

    def __repr__(self):
        return (
            f"RunningProcess({self.command_line!r}, "
            f"context={self.execution_context.name}, returncode={self.returncode})"
        )


class ProcessOrchestrator:
    """Spawns shell command lines and streams their output incrementally."""

    def __init__(self, chunk_size: int = 4096):
        self.chunk_size = chunk_size
        self._running: List[RunningProcess] = []

    @property
    def running(self) -> List[RunningProcess]:
        return list(self._running)

    def spawn(
        self,
        execution_context: ExecutionContext,
        command_line: str,
        surface: Optional[ResultSurface],
        on_chunk: ChunkCallback,
        on_exit: ExitCallback,
        cwd: Optional[str] = None,
    ) -> RunningProcess:
        """Start ``command_line`` without waiting for it.

        Must be called from a running event loop. ``on_chunk`` receives decoded
        stdout/stderr text in arrival order; ``on_exit`` is called exactly once
        with the exit status, even if the process printed nothing or could not
        be started.

        Raises:
            SurfaceBusyError: If ``surface`` already has a running process
        """
        if surface is not None and surface.busy:
            raise SurfaceBusyError(
                f"Surface {surface.name} already has a running process",
                surface.process.command_line if surface.process else None,
            )

        process = RunningProcess(
            command_line, execution_context, surface, on_chunk, on_exit
        )
        if surface is not None:
            surface.process = process
            surface.execution_context = execution_context
        self._running.append(process)

        loop = asyncio.get_running_loop()
        process.task = loop.create_task(self._drive(process, cwd))
        # A task cancelled before its first step never enters _drive
        process.task.add_done_callback(
            lambda task: self._finish(process, CANCELLED_EXIT_CODE)
        )
        logger.debug(f"Spawned in {execution_context.name}: {command_line}")
        return process

    async def wait_idle(self) -> None:
        """Wait until no process is running, including ones spawned meanwhile."""
        while self._running:
            tasks = [p.task for p in self._running if p.task is not None]
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _drive(self, process: RunningProcess, cwd: Optional[str]) -> None:
        returncode = CANCELLED_EXIT_CODE
        try:
            returncode = await self._run(process, cwd)
        except asyncio.CancelledError:
            returncode = self._kill(process)
            raise
        except Exception:
            logger.exception(f"Lost output stream of: {process.command_line}")
            returncode = self._kill(process)
        finally:
            self._finish(process, returncode)

    async def _run(self, process: RunningProcess, cwd: Optional[str]) -> int:
        spec = process.execution_context.launch_spec(process.command_line, cwd)
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        try:
            handle = await asyncio.create_subprocess_exec(
                *spec.argv,
                cwd=spec.cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            logger.exception(f"Failed to start {spec.argv[0]}")
            self._deliver(process, f"{spec.argv[0]}: {e}\n")
            return SPAWN_FAILURE_EXIT_CODE

        process.handle = handle
        assert handle.stdout is not None
        while True:
            data = await handle.stdout.read(self.chunk_size)
            if not data:
                break
            self._deliver(process, decoder.decode(data))
        self._deliver(process, decoder.decode(b"", final=True))

        return await handle.wait()

    def _kill(self, process: RunningProcess) -> int:
        """Kill the child if it is still running; returns the exit status to report."""
        handle = process.handle
        if handle is None:
            return CANCELLED_EXIT_CODE
        if handle.returncode is not None:
            return handle.returncode
        try:
            handle.kill()
        except ProcessLookupError:
            pass
        logger.debug(f"Killed: {process.command_line}")
        return CANCELLED_EXIT_CODE

    def _deliver(self, process: RunningProcess, text: str) -> None:
        if not text:
            return
        try:
            process.on_output_chunk(text)
        except Exception:
            logger.exception(f"Output callback failed for: {process.command_line}")

    def _finish(self, process: RunningProcess, returncode: int) -> None:
        if process.finished:
            return
        process.returncode = returncode
        if process.surface is not None and process.surface.process is process:
            process.surface.process = None
        if process in self._running:
            self._running.remove(process)

        elapsed = time.time() - process.started_at
        logger.debug(
            f"Process exited with {returncode} after {elapsed:.2f}s: "
            f"{process.command_line}"
        )
        try:
            process.on_completion(returncode)
        except Exception:
            logger.exception(f"Completion callback failed for: {process.command_line}")
