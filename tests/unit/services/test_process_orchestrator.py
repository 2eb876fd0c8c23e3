"""Unit tests for ProcessOrchestrator using real /bin/sh processes."""

import asyncio

import pytest

from locate_search.exceptions import SurfaceBusyError
from locate_search.execution.contexts import LocalExecutionContext
from locate_search.services.process_orchestrator import (
    CANCELLED_EXIT_CODE,
    SPAWN_FAILURE_EXIT_CODE,
    ProcessOrchestrator,
)
from locate_search.services.surface import SurfaceRegistry


@pytest.fixture
def surface():
    return SurfaceRegistry().create("/data/locate.db", "x")


class Recorder:
    """Collects chunks and exit codes delivered by the orchestrator."""

    def __init__(self):
        self.chunks = []
        self.exits = []

    def on_chunk(self, chunk):
        self.chunks.append(chunk)

    def on_exit(self, code):
        self.exits.append(code)

    @property
    def output(self):
        return "".join(self.chunks)


class TestSpawn:
    """Test output streaming and exit delivery."""

    @pytest.mark.asyncio
    async def test_output_and_exit_code(self, surface):
        orchestrator = ProcessOrchestrator()
        recorder = Recorder()

        orchestrator.spawn(
            LocalExecutionContext(),
            "printf 'one\\ntwo\\n'; exit 3",
            surface,
            recorder.on_chunk,
            recorder.on_exit,
        )
        await orchestrator.wait_idle()

        assert recorder.output == "one\ntwo\n"
        assert recorder.exits == [3]

    @pytest.mark.asyncio
    async def test_exit_delivered_without_output(self, surface):
        orchestrator = ProcessOrchestrator()
        recorder = Recorder()

        orchestrator.spawn(
            LocalExecutionContext(), "true", surface, recorder.on_chunk, recorder.on_exit
        )
        await orchestrator.wait_idle()

        assert recorder.chunks == []
        assert recorder.exits == [0]

    @pytest.mark.asyncio
    async def test_chunks_arrive_in_order(self, surface):
        orchestrator = ProcessOrchestrator(chunk_size=7)
        recorder = Recorder()
        expected = "".join(f"line {i}\n" for i in range(200))

        orchestrator.spawn(
            LocalExecutionContext(),
            "i=0; while [ $i -lt 200 ]; do echo \"line $i\"; i=$((i+1)); done",
            surface,
            recorder.on_chunk,
            recorder.on_exit,
        )
        await orchestrator.wait_idle()

        assert recorder.output == expected
        assert all(len(chunk.encode()) <= 7 for chunk in recorder.chunks)

    @pytest.mark.asyncio
    async def test_stderr_is_merged(self, surface):
        orchestrator = ProcessOrchestrator()
        recorder = Recorder()

        orchestrator.spawn(
            LocalExecutionContext(),
            "echo oops >&2; exit 1",
            surface,
            recorder.on_chunk,
            recorder.on_exit,
        )
        await orchestrator.wait_idle()

        assert recorder.output == "oops\n"
        assert recorder.exits == [1]

    @pytest.mark.asyncio
    async def test_multibyte_characters_split_across_chunks(self, surface):
        orchestrator = ProcessOrchestrator(chunk_size=1)
        recorder = Recorder()

        orchestrator.spawn(
            LocalExecutionContext(),
            "printf 'caf\\303\\251\\n'",
            surface,
            recorder.on_chunk,
            recorder.on_exit,
        )
        await orchestrator.wait_idle()

        assert recorder.output == "café\n"

    @pytest.mark.asyncio
    async def test_runs_in_working_directory(self, surface, tmp_path):
        orchestrator = ProcessOrchestrator()
        recorder = Recorder()

        orchestrator.spawn(
            LocalExecutionContext(),
            "pwd",
            surface,
            recorder.on_chunk,
            recorder.on_exit,
            cwd=str(tmp_path),
        )
        await orchestrator.wait_idle()

        assert recorder.output.strip() == str(tmp_path.resolve())

    @pytest.mark.asyncio
    async def test_missing_shell_still_calls_exit(self, surface):
        orchestrator = ProcessOrchestrator()
        recorder = Recorder()

        orchestrator.spawn(
            LocalExecutionContext(shell="/nonexistent/shell"),
            "true",
            surface,
            recorder.on_chunk,
            recorder.on_exit,
        )
        await orchestrator.wait_idle()

        assert recorder.exits == [SPAWN_FAILURE_EXIT_CODE]
        assert "/nonexistent/shell" in recorder.output
        assert surface.busy is False


class TestSurfaceOwnership:
    """Test the one-process-per-surface rule."""

    @pytest.mark.asyncio
    async def test_surface_busy_while_running(self, surface):
        orchestrator = ProcessOrchestrator()
        recorder = Recorder()

        process = orchestrator.spawn(
            LocalExecutionContext(), "sleep 0.2", surface, recorder.on_chunk, recorder.on_exit
        )

        assert surface.busy is True
        assert surface.process is process
        assert orchestrator.running == [process]

        with pytest.raises(SurfaceBusyError):
            orchestrator.spawn(
                LocalExecutionContext(), "true", surface, recorder.on_chunk, recorder.on_exit
            )

        await orchestrator.wait_idle()
        assert surface.busy is False
        assert process.finished is True
        assert orchestrator.running == []

    @pytest.mark.asyncio
    async def test_exit_callback_may_spawn_next_stage(self, surface):
        orchestrator = ProcessOrchestrator()
        recorder = Recorder()
        context = LocalExecutionContext()

        def chain(code):
            recorder.on_exit(code)
            orchestrator.spawn(
                context, "echo second", surface, recorder.on_chunk, recorder.on_exit
            )

        orchestrator.spawn(context, "echo first", surface, recorder.on_chunk, chain)
        await orchestrator.wait_idle()

        assert recorder.output == "first\nsecond\n"
        assert recorder.exits == [0, 0]

    @pytest.mark.asyncio
    async def test_spawn_does_not_block(self, surface):
        orchestrator = ProcessOrchestrator()
        recorder = Recorder()
        loop = asyncio.get_running_loop()

        started = loop.time()
        orchestrator.spawn(
            LocalExecutionContext(), "sleep 0.3", surface, recorder.on_chunk, recorder.on_exit
        )
        assert loop.time() - started < 0.1
        assert recorder.exits == []

        await orchestrator.wait_idle()
        assert recorder.exits == [0]

    @pytest.mark.asyncio
    async def test_failing_chunk_callback_does_not_lose_exit(self, surface):
        orchestrator = ProcessOrchestrator()
        recorder = Recorder()

        def broken(chunk):
            raise RuntimeError("renderer failed")

        orchestrator.spawn(
            LocalExecutionContext(), "echo hi", surface, broken, recorder.on_exit
        )
        await orchestrator.wait_idle()

        assert recorder.exits == [0]


class TestCancellation:
    """Test that a cancelled process still reports its exit once."""

    @pytest.mark.asyncio
    async def test_cancelled_task_kills_child_and_reports_exit(self, surface):
        orchestrator = ProcessOrchestrator()
        recorder = Recorder()

        process = orchestrator.spawn(
            LocalExecutionContext(), "sleep 5", surface, recorder.on_chunk, recorder.on_exit
        )
        while process.handle is None:
            await asyncio.sleep(0.01)

        process.task.cancel()
        await asyncio.wait_for(orchestrator.wait_idle(), timeout=2)

        assert recorder.exits == [CANCELLED_EXIT_CODE]
        assert surface.busy is False
        assert orchestrator.running == []
        assert process.finished is True
        await asyncio.wait_for(process.handle.wait(), timeout=2)

    @pytest.mark.asyncio
    async def test_cancel_before_start_reports_exit(self, surface):
        orchestrator = ProcessOrchestrator()
        recorder = Recorder()

        process = orchestrator.spawn(
            LocalExecutionContext(), "true", surface, recorder.on_chunk, recorder.on_exit
        )
        process.task.cancel()
        await orchestrator.wait_idle()

        assert recorder.exits == [CANCELLED_EXIT_CODE]
        assert surface.busy is False

    @pytest.mark.asyncio
    async def test_stream_error_reports_exit(self, surface, monkeypatch):
        orchestrator = ProcessOrchestrator()
        recorder = Recorder()

        async def broken_read(self, n=-1):
            raise ConnectionResetError("pipe closed")

        monkeypatch.setattr(asyncio.StreamReader, "read", broken_read)
        orchestrator.spawn(
            LocalExecutionContext(), "sleep 5", surface, recorder.on_chunk, recorder.on_exit
        )
        await asyncio.wait_for(orchestrator.wait_idle(), timeout=2)

        assert recorder.exits == [CANCELLED_EXIT_CODE]
        assert surface.busy is False
