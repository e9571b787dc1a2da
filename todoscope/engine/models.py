"""Candidate records and their aligned display rows."""

from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from rich.text import Text

from .buffers import Marker
from .config import NarrowMapping, StylesConfig
from .errors import NoResultsError
from .keywords import StyleProvider


@dataclass(frozen=True)
class BufferLocation:
    """Live position in a loaded buffer; follows edits while the buffer lives."""
    marker: Marker

    @property
    def alive(self) -> bool:
        return self.marker.buffer is not None


@dataclass(frozen=True)
class FileLocation:
    """Snapshot of a match in a file: absolute path, 1-based line and column."""
    path: str
    line: int
    column: int


Location = Union[BufferLocation, FileLocation]


@dataclass(frozen=True)
class Candidate:
    """One keyword occurrence."""
    source_name: str
    line_number: str
    keyword_type: str
    location: Location
    narrow_key: Optional[str]
    excerpt: str

    @property
    def from_buffer(self) -> bool:
        return isinstance(self.location, BufferLocation)

    def locator(self) -> Tuple[str, int, Union[int, Marker]]:
        """``(source, line, column-or-marker)`` identifying the occurrence."""
        if isinstance(self.location, FileLocation):
            return (self.location.path, self.location.line, self.location.column)
        return (self.source_name, int(self.line_number), self.location.marker)


@dataclass(frozen=True)
class DisplayRow:
    """A formatted candidate line that keeps its jump and narrow metadata."""
    text: Text
    location: Location
    narrow_key: Optional[str]
    candidate: Candidate

    @property
    def plain(self) -> str:
        return self.text.plain

    def copy(self) -> "DisplayRow":
        return replace(self, text=self.text.copy())

    def truncate(self, width: int) -> "DisplayRow":
        text = self.text.copy()
        text.truncate(width, overflow="ellipsis")
        return replace(self, text=text)

    def __str__(self) -> str:
        return self.plain


def resolve_narrow_key(keyword: str, mapping: NarrowMapping) -> Optional[str]:
    """Narrow character for ``keyword``; falls back to the other bucket."""
    return mapping.key_for(keyword)


def format_candidates(
    candidates: Sequence[Candidate],
    style_provider: StyleProvider,
    styles: Optional[StylesConfig] = None,
) -> List[DisplayRow]:
    """
    Render candidates as aligned rows.

    Column widths are computed over this result set only, so two searches may
    align differently.

    Args:
        candidates: Candidates in display order
        style_provider: Keyword style lookup
        styles: Source and line-number styles

    Returns:
        One row per candidate, same order

    Raises:
        NoResultsError: If ``candidates`` is empty
    """
    if not candidates:
        raise NoResultsError()
    styles = styles or StylesConfig()

    name_width = max(len(c.source_name) for c in candidates)
    line_width = max(len(c.line_number) for c in candidates)
    type_width = max(len(c.keyword_type) for c in candidates)

    rows = []
    for c in candidates:
        keyword_style = style_provider.resolve(c.keyword_type)
        if c.from_buffer:
            name_style = styles.buffer
        else:
            name_style = styles.file
            keyword_style = f"{keyword_style} {styles.directory_keyword}"
        text = Text.assemble(
            (c.source_name.ljust(name_width), name_style),
            " ",
            (c.line_number.ljust(line_width), styles.line_number),
            " ",
            (c.keyword_type.ljust(type_width), keyword_style),
            " ",
            c.excerpt,
        )
        rows.append(DisplayRow(text=text, location=c.location,
                               narrow_key=c.narrow_key, candidate=c))
    return rows


def group_rows(rows: Iterable[DisplayRow], groups: Dict[str, str]) -> List[Tuple[str, List[DisplayRow]]]:
    """Group rows under their narrow labels, in ``groups`` order.

    Rows whose narrow key has no label end up in a trailing group named after
    their keyword.
    """
    grouped: Dict[str, List[DisplayRow]] = {label: [] for label in groups.values()}
    for row in rows:
        label = groups.get(row.narrow_key) if row.narrow_key is not None else None
        grouped.setdefault(label or row.candidate.keyword_type, []).append(row)
    return [(label, members) for label, members in grouped.items() if members]


def narrow_rows(rows: Iterable[DisplayRow], key: Optional[str]) -> List[DisplayRow]:
    """Rows whose narrow key equals ``key``; all rows when ``key`` is None."""
    if key is None:
        return list(rows)
    return [row for row in rows if row.narrow_key == key]
