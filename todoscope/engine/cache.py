"""Directory result cache."""

from typing import Dict, List, Optional, Sequence

from loguru import logger

from .models import Candidate


class ResultCache:
    """Candidates of slow directory searches, keyed by directory.

    Entries are never expired or checked against the file system; they live
    until cleared or until the process exits. Keys are compared as exact
    strings.
    """

    def __init__(self):
        self._entries: Dict[str, List[Candidate]] = {}

    def get(self, directory: str) -> Optional[List[Candidate]]:
        """Cached candidates for ``directory``, or None."""
        entry = self._entries.get(directory)
        return list(entry) if entry is not None else None

    def put(self, directory: str, candidates: Sequence[Candidate]) -> None:
        """Store candidates, replacing any previous entry."""
        self._entries[directory] = list(candidates)
        logger.debug(f"Cached {len(candidates)} candidate(s) for {directory}")

    def clear(self, directory: str) -> None:
        if self._entries.pop(directory, None) is not None:
            logger.debug(f"Cleared cache for {directory}")

    def clear_all(self) -> None:
        self._entries.clear()

    def keys(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, directory: object) -> bool:
        return directory in self._entries

    def __len__(self) -> int:
        return len(self._entries)
