"""Terminal picker built on rich and click prompts."""

from pathlib import Path
from typing import List, Optional, Tuple

import click
from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from ..engine.errors import PickerCancelled
from ..engine.models import BufferLocation, DisplayRow, Location, group_rows, narrow_rows
from ..engine.picker import Picker, PickerRequest


def preview_lines(location: Location, context: int = 2) -> List[Tuple[int, str]]:
    """Numbered lines around a location; empty when its source is gone."""
    if isinstance(location, BufferLocation):
        buffer = location.marker.buffer
        if buffer is None:
            return []
        lines = buffer.text.splitlines()
        line = buffer.line_number_at(location.marker.position)
    else:
        try:
            lines = Path(location.path).read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError:
            return []
        line = location.line
    first = max(line - context, 1)
    last = min(line + context, len(lines))
    return [(n, lines[n - 1]) for n in range(first, last + 1)]


class ConsolePicker(Picker):
    """Numbered candidate list with narrowing by typing a narrow key.

    Rows are picked by number, so there is no cursor movement to follow:
    preview modes ``any`` and ``debounce`` both preview the chosen row once
    and ``preview.delay`` is not used. Mode ``keys`` previews a row without
    picking it when its number is prefixed with a preview key.
    """

    def __init__(self, console: Optional[Console] = None):
        super().__init__()
        self.console = console or Console()

    def _prompt(self, text: str, default: Optional[str] = "") -> str:
        try:
            return click.prompt(text, default=default, show_default=bool(default))
        except click.Abort:
            raise PickerCancelled() from None

    def _select(self, request: PickerRequest) -> DisplayRow:
        narrowed: Optional[str] = None
        while True:
            ordered = self._show(request, narrowed)
            answer = self._prompt(
                "Number, narrow key to filter, '*' for all, empty to cancel"
            ).strip()
            if not answer:
                raise PickerCancelled()
            if answer == "*":
                narrowed = None
                continue
            if answer in request.groups:
                narrowed = None if narrowed == answer else answer
                continue

            preview_only = False
            if request.preview.mode == "keys" and answer[0] in request.preview.keys:
                answer, preview_only = answer[1:], True
            if not answer.isdigit() or not 1 <= int(answer) <= len(ordered):
                self.console.print(f"[red]No candidate {answer!r}[/red]")
                continue

            row = ordered[int(answer) - 1]
            if request.preview.mode != "none":
                self._preview(row)
            if not preview_only:
                return row

    def _show(self, request: PickerRequest, narrowed: Optional[str]) -> List[DisplayRow]:
        title = request.prompt
        if narrowed is not None:
            title += f" [{request.groups[narrowed]}]"
        self.console.print(Rule(title))

        ordered = []
        for label, members in group_rows(narrow_rows(request.rows, narrowed), request.groups):
            table = Table(title=label, title_justify="left", show_header=False, box=None)
            table.add_column("#", justify="right", style="dim")
            table.add_column("Keyword", no_wrap=True)
            for row in members:
                ordered.append(row)
                table.add_row(str(len(ordered)), row.truncate(self.console.width - 8).text)
            self.console.print(table)

        keys = "  ".join(f"{char}:{label}" for char, label in request.groups.items())
        if keys:
            self.console.print(f"[dim]{keys}[/dim]")
        return ordered

    def _preview(self, row: DisplayRow) -> None:
        lines = preview_lines(row.location)
        if not lines:
            return
        width = len(str(lines[-1][0]))
        body = Text("\n".join(f"{n:>{width}} {text}" for n, text in lines))
        self.console.print(Panel(body, title=row.candidate.source_name, expand=False))

    def _choose(self, prompt: str, choices: List[str]) -> str:
        for i, choice in enumerate(choices, 1):
            self.console.print(f"  {i}. {choice}", markup=False)
        while True:
            answer = self._prompt(f"{prompt} (number, empty to cancel)").strip()
            if not answer:
                raise PickerCancelled()
            if answer.isdigit() and 1 <= int(answer) <= len(choices):
                return choices[int(answer) - 1]
            if answer in choices:
                return answer
            self.console.print(f"[red]No choice {answer!r}[/red]")

    def _read_directory(self, prompt: str, default: Optional[str]) -> str:
        while True:
            answer = self._prompt(prompt, default=default or "").strip()
            if not answer:
                raise PickerCancelled()
            if Path(answer).expanduser().is_dir():
                return answer
            self.console.print(f"[red]Not a directory: {answer}[/red]")
