"""Project root lookup."""

from pathlib import Path
from typing import Callable, Iterable, Optional

from loguru import logger


ProjectResolver = Callable[[Path], Optional[Path]]

ROOT_MARKERS = (".git", ".hg", ".svn", ".bzr", "_darcs", ".project", ".projectile")


def find_project_root(start: Path, markers: Iterable[str] = ROOT_MARKERS) -> Optional[Path]:
    """Closest directory at or above ``start`` holding one of ``markers``."""
    markers = tuple(markers)
    start = Path(start).expanduser().resolve()
    if start.is_file():
        start = start.parent
    for directory in (start, *start.parents):
        if any((directory / marker).exists() for marker in markers):
            logger.debug(f"Project root for {start}: {directory}")
            return directory
    return None
