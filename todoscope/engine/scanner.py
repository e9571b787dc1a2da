"""Direct keyword scanning of loaded buffers."""

from typing import List, Optional, Sequence

from loguru import logger

from .buffers import BufferRegistry, TextBuffer
from .config import NarrowMapping
from .keywords import KeywordCatalog
from .models import BufferLocation, Candidate, resolve_narrow_key


def scan_buffer(
    buffer: TextBuffer,
    catalog: KeywordCatalog,
    mapping: NarrowMapping,
    comments_only: bool = False,
) -> List[Candidate]:
    """Keyword occurrences of one buffer, in position order.

    The whole buffer is scanned regardless of narrowing; point and the
    restriction are restored afterwards.
    """
    candidates = []
    with buffer.save_excursion():
        buffer.widen()
        position = buffer.point_min
        while True:
            match = catalog.search_forward(buffer, position)
            if match is None:
                break
            position = max(match.end, match.start + 1)
            if comments_only and not match.in_comment:
                continue

            keyword = match.keyword or buffer.word_at(match.start)
            if not keyword:
                logger.debug(f"No keyword at {buffer.name}:{match.start}, skipping")
                continue
            excerpt = buffer.substring(match.end, buffer.line_end(match.end)).strip()
            candidates.append(Candidate(
                source_name=buffer.name,
                line_number=str(buffer.line_number_at(match.start)),
                keyword_type=keyword,
                location=BufferLocation(buffer.marker(match.start)),
                narrow_key=resolve_narrow_key(keyword, mapping),
                excerpt=excerpt,
            ))
    return candidates


def scan_buffers(
    buffers: Optional[Sequence[TextBuffer]],
    catalog: KeywordCatalog,
    mapping: NarrowMapping,
    comments_only: bool = False,
    registry: Optional[BufferRegistry] = None,
) -> List[Candidate]:
    """
    Scan buffers in the given order and concatenate their candidates.

    Args:
        buffers: Buffers to scan; empty or None means the current buffer
        catalog: Keyword matcher
        mapping: Extended narrow mapping
        comments_only: Keep only matches inside comments
        registry: Source of the current buffer

    Returns:
        Candidates per buffer in position order, buffers in input order
    """
    if not buffers:
        if registry is None:
            raise ValueError("No buffers given and no registry to take the current one from")
        buffers = [registry.current]

    candidates = []
    for buffer in buffers:
        found = scan_buffer(buffer, catalog, mapping, comments_only)
        logger.debug(f"Scanned {buffer.name}: {len(found)} keyword(s)")
        candidates.extend(found)
    return candidates
