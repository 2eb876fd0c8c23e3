"""
Result surfaces: append-only text views of build and search progress.

A surface is identified by the (database path, pattern) pair stamped on it
when it is first created. The registry keeps one open surface per identity
key, so running the same search twice reuses the surface instead of opening
a second one.
"""

import logging
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, List, Optional, Tuple

from ..models import SurfaceState
from .commands import database_directory

if TYPE_CHECKING:
    from ..execution.contexts import ExecutionContext
    from .process_orchestrator import RunningProcess

logger = logging.getLogger(__name__)

DATABASE_TAG = "locate-db"
PATTERN_TAG = "locate-pattern"

IdentityKey = Tuple[str, str]


class SurfaceEvent(Enum):
    """Changes a surface reports to registry subscribers."""

    CREATED = "created"
    CLEARED = "cleared"
    APPENDED = "appended"
    TRUNCATED = "truncated"
    CLOSED = "closed"


SurfaceListener = Callable[["ResultSurface", SurfaceEvent, str], None]


class ResultSurface:
    """Append-only text buffer carrying its identity key as metadata."""

    def __init__(
        self,
        name: str,
        database_path: str,
        pattern: str,
        notify: Optional[Callable[["ResultSurface", SurfaceEvent, str], None]] = None,
    ):
        self.name = name
        self.metadata = MappingProxyType(
            {DATABASE_TAG: database_path, PATTERN_TAG: pattern}
        )
        self.state = SurfaceState.IDLE
        self.process: Optional["RunningProcess"] = None
        self.execution_context: Optional["ExecutionContext"] = None
        self.listing_root: Optional[str] = None
        self.refresh_hook: Optional[Callable[[], Any]] = None
        self.view_position = 0
        self.results_start = 0
        self.closed = False
        self._parts: List[str] = []
        self._length = 0
        self._notify = notify

    def __repr__(self):
        return f"ResultSurface(name={self.name!r}, state={self.state.value})"

    @property
    def identity_key(self) -> IdentityKey:
        return (self.metadata[DATABASE_TAG], self.metadata[PATTERN_TAG])

    @property
    def database_path(self) -> str:
        return self.metadata[DATABASE_TAG]

    @property
    def pattern(self) -> str:
        return self.metadata[PATTERN_TAG]

    @property
    def busy(self) -> bool:
        """True while a process is writing to this surface."""
        return self.process is not None

    @property
    def text(self) -> str:
        if len(self._parts) > 1:
            self._parts = ["".join(self._parts)]
        return self._parts[0] if self._parts else ""

    def __len__(self) -> int:
        return self._length

    def lines(self) -> List[str]:
        return self.text.splitlines()

    def clear(self) -> None:
        self._parts = []
        self._length = 0
        self.view_position = 0
        self.results_start = 0
        self._emit(SurfaceEvent.CLEARED, "")

    def append_text(self, text: str) -> None:
        """Append at the end; the view position is left where it is."""
        if not text:
            return
        self._parts.append(text)
        self._length += len(text)
        self._emit(SurfaceEvent.APPENDED, text)

    def truncate(self, position: int) -> None:
        """Delete everything from ``position`` to the end."""
        if position >= self._length:
            return
        removed = self.text[position:]
        self._parts = [self.text[:position]]
        self._length = position
        self.view_position = min(self.view_position, position)
        self.results_start = min(self.results_start, position)
        self._emit(SurfaceEvent.TRUNCATED, removed)

    def move_view_to_results_start(self) -> None:
        """Place the view just past the text written so far and any whitespace."""
        self.results_start = self._length
        remainder = self.text[self.results_start :]
        self.view_position = self.results_start + (
            len(remainder) - len(remainder.lstrip())
        )

    @property
    def has_results(self) -> bool:
        """True if anything was appended after the results start."""
        return self._length > self.results_start

    def refresh(self) -> Any:
        """Re-run whatever produced this surface."""
        if self.refresh_hook is None:
            logger.debug(f"Surface {self.name} has no refresh hook")
            return None
        return self.refresh_hook()

    def _emit(self, event: SurfaceEvent, text: str) -> None:
        if self._notify is not None:
            self._notify(self, event, text)


class SurfaceRegistry:
    """Open surfaces indexed by identity key."""

    def __init__(self):
        self._surfaces: Dict[IdentityKey, ResultSurface] = {}
        self._listeners: List[SurfaceListener] = []

    def __iter__(self) -> Iterator[ResultSurface]:
        return iter(list(self._surfaces.values()))

    def __len__(self) -> int:
        return len(self._surfaces)

    def subscribe(self, listener: SurfaceListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: SurfaceListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def find_existing(
        self, database_path: str, pattern: str
    ) -> Optional[ResultSurface]:
        return self._surfaces.get((database_path, pattern))

    def name_for(self, database_path: str, pattern: str) -> str:
        """Existing surface's name, or a fresh one derived from the pattern."""
        existing = self.find_existing(database_path, pattern)
        if existing is not None:
            return existing.name

        taken = {surface.name for surface in self._surfaces.values()}
        base = f"*Locate {pattern}*"
        name = base
        suffix = 2
        while name in taken:
            name = f"{base}<{suffix}>"
            suffix += 1
        return name

    def create(
        self,
        database_path: str,
        pattern: str,
        refresh_hook: Optional[Callable[[], Any]] = None,
    ) -> ResultSurface:
        """Create or reuse the surface for (database_path, pattern).

        The content is cleared and replaced by a header line showing the
        database directory.
        """
        surface = self.find_existing(database_path, pattern)
        if surface is None:
            surface = ResultSurface(
                self.name_for(database_path, pattern),
                database_path,
                pattern,
                notify=self._dispatch,
            )
            self._surfaces[surface.identity_key] = surface
            logger.debug(f"Created surface {surface.name}")
            self._dispatch(surface, SurfaceEvent.CREATED, "")
        else:
            logger.debug(f"Reusing surface {surface.name}")

        directory = database_directory(database_path)
        surface.clear()
        surface.append_text(f"  {directory}:\n")
        surface.listing_root = directory
        surface.refresh_hook = refresh_hook
        return surface

    def close(self, surface: ResultSurface) -> None:
        """Forget ``surface``; a process still writing to it keeps running."""
        if self._surfaces.get(surface.identity_key) is surface:
            del self._surfaces[surface.identity_key]
        surface.closed = True
        self._dispatch(surface, SurfaceEvent.CLOSED, "")

    def _dispatch(self, surface: ResultSurface, event: SurfaceEvent, text: str) -> None:
        for listener in list(self._listeners):
            listener(surface, event, text)
