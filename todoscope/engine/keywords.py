"""Keyword catalog: which words count as annotations, and how they look."""

import re
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from .buffers import TextBuffer


DEFAULT_KEYWORDS: Dict[str, str] = {
    "TODO": "bold red",
    "FIXME": "bold red",
    "BUG": "bold magenta",
    "HACK": "bold yellow",
    "NOTE": "bold dark_green",
    "XXX": "bold red",
}

DEFAULT_STYLE = "bold"


class StyleProvider(Protocol):
    """Resolves the display style of a keyword."""

    def resolve(self, keyword: str) -> str:
        ...


@dataclass(frozen=True)
class KeywordMatch:
    """One occurrence found by :meth:`KeywordCatalog.search_forward`.

    ``keyword`` is None when the matcher could not capture the keyword text;
    ``start`` is accurate either way.
    """
    start: int
    end: int
    keyword: Optional[str]
    in_comment: bool


class KeywordCatalog:
    """Keyword set with a matcher usable on buffers and by ripgrep.

    A keyword matches as a whole word, optionally followed by a colon, which
    becomes part of the match so excerpts start after it.
    """

    def __init__(self, keywords: Optional[Dict[str, str]] = None):
        self.keywords: Dict[str, str] = dict(DEFAULT_KEYWORDS if keywords is None else keywords)
        if not self.keywords:
            raise ValueError("Keyword catalog needs at least one keyword")
        alternatives = "|".join(re.escape(k) for k in self.keywords)
        self._regexp = rf"\b({alternatives})\b:?"
        self.pattern = re.compile(self._regexp)

    @property
    def regexp(self) -> str:
        """Pattern source shared by Python ``re`` and ripgrep."""
        return self._regexp

    def search_forward(self, buffer: TextBuffer, start: int) -> Optional[KeywordMatch]:
        """Next keyword at or after ``start`` inside the accessible region."""
        begin = max(start, buffer.point_min)
        end = buffer.point_max
        if begin >= end:
            return None
        match = self.pattern.search(buffer.text, begin, end)
        if match is None:
            return None
        return KeywordMatch(
            start=match.start(),
            end=match.end(),
            keyword=match.group(1),
            in_comment=buffer.in_comment(match.start()),
        )

    def keyword_of(self, text: str) -> Optional[str]:
        """Extract the keyword from a matched span such as ``"TODO:"``."""
        match = self.pattern.search(text)
        return match.group(1) if match else None

    def resolve(self, keyword: str) -> str:
        return self.keywords.get(keyword, DEFAULT_STYLE)
