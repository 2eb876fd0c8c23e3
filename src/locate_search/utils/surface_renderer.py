"""Mirror result surface events to a terminal."""

from typing import Optional

from rich.console import Console

from ..services.surface import ResultSurface, SurfaceEvent


class SurfaceConsoleRenderer:
    """Writes appended surface text to a rich console as it arrives.

    A terminal cannot take text back, so clears start a new section under a
    rule and truncations are reported with a short note.
    """

    def __init__(self, console: Console):
        self.console = console
        self._current: Optional[ResultSurface] = None

    def __call__(self, surface: ResultSurface, event: SurfaceEvent, text: str) -> None:
        if event == SurfaceEvent.CLEARED:
            self.console.rule(surface.name, style="cyan")
            self._current = surface
        elif event == SurfaceEvent.APPENDED:
            if self._current is not surface:
                self.console.rule(surface.name, style="cyan")
                self._current = surface
            # Raw output: file names must not be read as markup
            self.console.out(text, end="", highlight=False)
        elif event == SurfaceEvent.TRUNCATED:
            lines = text.count("\n")
            self.console.print(
                f"({lines} line(s) of index build output discarded)",
                style="dim",
                markup=False,
            )
        elif event == SurfaceEvent.CLOSED:
            if self._current is surface:
                self._current = None
