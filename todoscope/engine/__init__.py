"""Keyword search engine: buffer scanning, directory search, caching."""

from .buffers import BufferRegistry, CommentSyntax, Marker, TextBuffer
from .bus import Event, EventBus, get_event_bus
from .cache import ResultCache
from .config import UNGROUPED, Config, NarrowMapping
from .errors import (
    NarrowConfigError,
    NoResultsError,
    PickerBusyError,
    PickerCancelled,
    TodoscopeError,
)
from .keywords import KeywordCatalog, KeywordMatch, StyleProvider
from .models import (
    BufferLocation,
    Candidate,
    DisplayRow,
    FileLocation,
    format_candidates,
    resolve_narrow_key,
)
from .orchestrator import JumpTarget, SearchOrchestrator
from .picker import Picker, PickerRequest
from .runner import DirectorySearchRunner, SearchOutcome, SearchRun, publish_search_outcome
from .scanner import scan_buffer, scan_buffers

__all__ = [
    "BufferLocation",
    "BufferRegistry",
    "Candidate",
    "CommentSyntax",
    "Config",
    "DirectorySearchRunner",
    "DisplayRow",
    "Event",
    "EventBus",
    "FileLocation",
    "JumpTarget",
    "KeywordCatalog",
    "KeywordMatch",
    "Marker",
    "NarrowConfigError",
    "NarrowMapping",
    "NoResultsError",
    "Picker",
    "PickerBusyError",
    "PickerCancelled",
    "PickerRequest",
    "ResultCache",
    "SearchOrchestrator",
    "SearchOutcome",
    "SearchRun",
    "StyleProvider",
    "TextBuffer",
    "TodoscopeError",
    "UNGROUPED",
    "format_candidates",
    "get_event_bus",
    "publish_search_outcome",
    "resolve_narrow_key",
    "scan_buffer",
    "scan_buffers",
]
