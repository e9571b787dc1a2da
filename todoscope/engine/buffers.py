"""In-memory text buffers with live markers and comment syntax state.

A ``TextBuffer`` holds the text of one loaded file (or an unnamed scratch
text) together with the editing state the scanner depends on:

- a point and an accessible region that can be narrowed and widened
- markers that keep pointing at the same text while the buffer is edited
- a lexical view of where comments are, derived from the buffer's
  ``CommentSyntax``

Positions are 0-based character offsets. Line numbers are 1-based.
"""

import bisect
import re
import weakref
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from loguru import logger


@dataclass(frozen=True)
class CommentSyntax:
    """Comment and string delimiters of a language."""
    line: Tuple[str, ...] = ()
    block: Tuple[Tuple[str, str], ...] = ()
    strings: Tuple[str, ...] = ('"', "'")

    def pattern(self) -> "re.Pattern":
        """Token pattern matching strings and comments, leftmost first."""
        parts = []
        for quote in self.strings:
            q = re.escape(quote)
            parts.append(f"(?P<s{len(parts)}>{q}(?:\\\\.|(?!{q})[^\\\\\\n])*(?:{q})?)")
        for opener in self.line:
            parts.append(f"(?P<c{len(parts)}>{re.escape(opener)}[^\\n]*)")
        for opener, closer in self.block:
            parts.append(
                f"(?P<c{len(parts)}>{re.escape(opener)}.*?(?:{re.escape(closer)}|\\Z))"
            )
        if not parts:
            return re.compile(r"(?!)")
        return re.compile("|".join(parts), re.DOTALL)


C_LIKE = CommentSyntax(line=("//",), block=(("/*", "*/"),))
HASH = CommentSyntax(line=("#",))
LISP = CommentSyntax(line=(";",), strings=('"',))
SQL = CommentSyntax(line=("--",), block=(("/*", "*/"),))
LUA = CommentSyntax(line=("--",), block=(("--[[", "]]"),))
MARKUP = CommentSyntax(block=(("<!--", "-->"),), strings=())
TEX = CommentSyntax(line=("%",), strings=())
DEFAULT_SYNTAX = CommentSyntax(line=("#", "//"), block=(("/*", "*/"),))

SYNTAX_BY_EXTENSION: Dict[str, CommentSyntax] = {
    **dict.fromkeys(
        [".c", ".h", ".cc", ".cpp", ".hpp", ".java", ".js", ".jsx", ".ts",
         ".tsx", ".go", ".rs", ".cs", ".kt", ".swift", ".scala", ".dart",
         ".php", ".css", ".scss"],
        C_LIKE,
    ),
    **dict.fromkeys(
        [".py", ".rb", ".sh", ".bash", ".zsh", ".pl", ".r", ".yaml", ".yml",
         ".toml", ".cfg", ".ini", ".mk", ".cmake", ".nix", ".tf"],
        HASH,
    ),
    **dict.fromkeys([".el", ".lisp", ".clj", ".scm", ".rkt"], LISP),
    ".sql": SQL,
    ".lua": LUA,
    **dict.fromkeys([".html", ".xml", ".md", ".vue", ".svg"], MARKUP),
    ".tex": TEX,
}

_WORD = re.compile(r"\w+")


def syntax_for(name: str) -> CommentSyntax:
    """Pick the comment syntax for a file or buffer name."""
    path = Path(name)
    if path.name in ("Makefile", "Dockerfile", "CMakeLists.txt"):
        return HASH
    return SYNTAX_BY_EXTENSION.get(path.suffix.lower(), DEFAULT_SYNTAX)


def comment_ranges(text: str, syntax: CommentSyntax) -> List[Tuple[int, int]]:
    """Return ``(start, end)`` spans of every comment in ``text``.

    Strings are matched by the same pattern so comment openers inside string
    literals are not taken for comments.
    """
    ranges = []
    for match in syntax.pattern().finditer(text):
        if match.lastgroup and match.lastgroup.startswith("c"):
            ranges.append(match.span())
    return ranges


class Marker:
    """A position in a buffer that follows insertions and deletions."""

    __slots__ = ("_buffer", "position", "__weakref__")

    def __init__(self, buffer: "TextBuffer", position: int):
        self._buffer = weakref.ref(buffer)
        self.position = position

    @property
    def buffer(self) -> Optional["TextBuffer"]:
        """The owning buffer, or None once it is killed or collected."""
        buffer = self._buffer() if self._buffer is not None else None
        if buffer is None or not buffer.live:
            return None
        return buffer

    def detach(self) -> None:
        self._buffer = None

    def __repr__(self) -> str:
        buffer = self.buffer
        where = buffer.name if buffer is not None else "no buffer"
        return f"<Marker at {self.position} in {where}>"


class TextBuffer:
    """A named text with point, narrowing and live markers."""

    def __init__(
        self,
        name: str,
        text: str = "",
        path: Optional[Path] = None,
        syntax: Optional[CommentSyntax] = None,
        keyword_highlighting: bool = True,
    ):
        self.name = name
        self.path = path
        self.syntax = syntax or syntax_for(str(path) if path else name)
        self.keyword_highlighting = keyword_highlighting
        self.live = True
        self.point = 0
        self._text = text
        self._restriction: Optional[Tuple[int, int]] = None
        self._markers: "weakref.WeakSet[Marker]" = weakref.WeakSet()
        self._revision = 0
        self._comments: Optional[Tuple[int, List[int], List[Tuple[int, int]]]] = None

    def __repr__(self) -> str:
        return f"<TextBuffer {self.name}>"

    def __len__(self) -> int:
        return len(self._text)

    @property
    def text(self) -> str:
        """Full buffer text, ignoring any narrowing."""
        return self._text

    @property
    def point_min(self) -> int:
        return self._restriction[0] if self._restriction else 0

    @property
    def point_max(self) -> int:
        return self._restriction[1] if self._restriction else len(self._text)

    @property
    def narrowed(self) -> bool:
        return self._restriction is not None

    def substring(self, start: int, end: int) -> str:
        return self._text[start:end]

    def narrow_to(self, start: int, end: int) -> None:
        """Restrict the accessible region to ``[start, end)``."""
        start, end = sorted((start, end))
        if start < 0 or end > len(self._text):
            raise ValueError(f"Region {start}-{end} outside buffer {self.name}")
        self._restriction = (start, end)
        self.point = min(max(self.point, start), end)

    def widen(self) -> None:
        self._restriction = None

    @contextmanager
    def save_excursion(self) -> Iterator["TextBuffer"]:
        """Restore point and narrowing when the block exits."""
        saved_point = self.marker(self.point)
        saved_region = (
            (self.marker(self._restriction[0]), self.marker(self._restriction[1]))
            if self._restriction else None
        )
        try:
            yield self
        finally:
            if saved_region is not None:
                self._restriction = (saved_region[0].position, saved_region[1].position)
            else:
                self._restriction = None
            self.point = saved_point.position

    def goto(self, position: int) -> int:
        """Move point, clamped to the accessible region."""
        self.point = min(max(position, self.point_min), self.point_max)
        return self.point

    def insert(self, position: int, text: str) -> None:
        """Insert ``text`` at ``position``; markers at or after it shift."""
        if not 0 <= position <= len(self._text):
            raise ValueError(f"Position {position} outside buffer {self.name}")
        size = len(text)
        self._text = self._text[:position] + text + self._text[position:]
        for marker in list(self._markers):
            if marker.position > position:
                marker.position += size
        if self.point > position:
            self.point += size
        if self._restriction:
            start, end = self._restriction
            self._restriction = (
                start + size if start > position else start,
                end + size if end >= position else end,
            )
        self._touch()

    def delete(self, start: int, end: int) -> None:
        """Delete ``[start, end)``; markers inside collapse to ``start``."""
        start, end = sorted((start, end))
        if start < 0 or end > len(self._text):
            raise ValueError(f"Region {start}-{end} outside buffer {self.name}")
        size = end - start
        self._text = self._text[:start] + self._text[end:]

        def shift(pos: int) -> int:
            if pos >= end:
                return pos - size
            return min(pos, start)

        for marker in list(self._markers):
            marker.position = shift(marker.position)
        self.point = shift(self.point)
        if self._restriction:
            self._restriction = (shift(self._restriction[0]), shift(self._restriction[1]))
        self._touch()

    def marker(self, position: int) -> Marker:
        marker = Marker(self, position)
        self._markers.add(marker)
        return marker

    def line_number_at(self, position: int) -> int:
        return self._text.count("\n", 0, position) + 1

    def line_bounds(self, position: int) -> Tuple[int, int]:
        start = self._text.rfind("\n", 0, position) + 1
        end = self._text.find("\n", position)
        return start, len(self._text) if end == -1 else end

    def line_end(self, position: int) -> int:
        return self.line_bounds(position)[1]

    def line_column_at(self, position: int) -> Tuple[int, int]:
        """1-based line and column of ``position``."""
        start, _ = self.line_bounds(position)
        return self.line_number_at(position), position - start + 1

    def position_of(self, line: int, column: int = 1) -> int:
        """Offset of a 1-based line and column, clamped to that line."""
        start = 0
        for _ in range(max(line, 1) - 1):
            found = self._text.find("\n", start)
            if found == -1:
                break
            start = found + 1
        _, end = self.line_bounds(start)
        return min(start + max(column, 1) - 1, end)

    def word_at(self, position: int) -> str:
        """The word containing or starting at ``position``."""
        start, end = self.line_bounds(position)
        for match in _WORD.finditer(self._text, start, end):
            if match.end() > position:
                return match.group()
        return ""

    def in_comment(self, position: int) -> bool:
        starts, ranges = self._comment_index()
        index = bisect.bisect_right(starts, position) - 1
        return index >= 0 and position < ranges[index][1]

    def kill(self) -> None:
        """Mark the buffer dead and detach all of its markers."""
        self.live = False
        for marker in list(self._markers):
            marker.detach()
        self._markers = weakref.WeakSet()

    def _touch(self) -> None:
        self._revision += 1

    def _comment_index(self) -> Tuple[List[int], List[Tuple[int, int]]]:
        if self._comments is None or self._comments[0] != self._revision:
            ranges = comment_ranges(self._text, self.syntax)
            self._comments = (self._revision, [r[0] for r in ranges], ranges)
        return self._comments[1], self._comments[2]


class BufferRegistry:
    """The set of open buffers and the current one."""

    def __init__(self):
        self._buffers: List[TextBuffer] = []
        self._current: Optional[TextBuffer] = None

    @property
    def buffers(self) -> List[TextBuffer]:
        return list(self._buffers)

    @property
    def current(self) -> TextBuffer:
        if self._current is None or not self._current.live:
            self._current = self._buffers[0] if self._buffers else self.create("*scratch*")
        return self._current

    def highlighted(self) -> List[TextBuffer]:
        """Buffers with keyword highlighting active."""
        return [b for b in self._buffers if b.keyword_highlighting]

    def get(self, name: str) -> Optional[TextBuffer]:
        for buffer in self._buffers:
            if buffer.name == name:
                return buffer
        return None

    def create(self, name: str, text: str = "", path: Optional[Path] = None,
               **kwargs) -> TextBuffer:
        buffer = TextBuffer(self._unique_name(name), text, path=path, **kwargs)
        self._buffers.append(buffer)
        if self._current is None:
            self._current = buffer
        logger.debug(f"Created buffer {buffer.name}")
        return buffer

    def find_file(self, path, encoding: str = "utf-8") -> TextBuffer:
        """Return the buffer visiting ``path``, loading it if needed.

        Raises OSError when the file cannot be read.
        """
        path = Path(path).expanduser().resolve()
        for buffer in self._buffers:
            if buffer.path == path:
                return buffer
        text = path.read_text(encoding=encoding, errors="replace")
        return self.create(path.name, text, path=path)

    def switch_to(self, buffer: TextBuffer) -> TextBuffer:
        if buffer not in self._buffers:
            raise ValueError(f"{buffer!r} is not registered")
        self._current = buffer
        return buffer

    def kill(self, buffer: TextBuffer) -> None:
        if buffer in self._buffers:
            self._buffers.remove(buffer)
        buffer.kill()
        if self._current is buffer:
            self._current = None

    def _unique_name(self, name: str) -> str:
        taken = {b.name for b in self._buffers}
        if name not in taken:
            return name
        n = 2
        while f"{name}<{n}>" in taken:
            n += 1
        return f"{name}<{n}>"
