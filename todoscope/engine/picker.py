"""Interface of the interactive candidate picker."""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from .config import PreviewConfig
from .errors import PickerBusyError
from .models import DisplayRow


# Picker categories.
POSITION = "position"
FILE_LOCATION = "file-location"


@dataclass
class PickerRequest:
    """Everything a picker needs to show one candidate list."""
    prompt: str
    rows: List[DisplayRow]
    category: str = POSITION
    groups: Dict[str, str] = field(default_factory=dict)
    preview: PreviewConfig = field(default_factory=PreviewConfig)


class Picker(ABC):
    """
    Modal selection UI.

    Only one modal read may be active at a time; opening a second one while
    the first is still reading input raises PickerBusyError. Implementations
    raise PickerCancelled when the user aborts.
    """

    def __init__(self):
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    @contextmanager
    def _modal(self) -> Iterator[None]:
        if self._active:
            raise PickerBusyError()
        self._active = True
        try:
            yield
        finally:
            self._active = False

    def select(self, request: PickerRequest) -> DisplayRow:
        """Let the user pick one row."""
        with self._modal():
            return self._select(request)

    def choose(self, prompt: str, choices: List[str]) -> str:
        """Let the user pick one string."""
        with self._modal():
            return self._choose(prompt, choices)

    def read_directory(self, prompt: str, default: Optional[str] = None) -> str:
        """Ask for a directory."""
        with self._modal():
            return self._read_directory(prompt, default)

    @abstractmethod
    def _select(self, request: PickerRequest) -> DisplayRow:
        ...

    @abstractmethod
    def _choose(self, prompt: str, choices: List[str]) -> str:
        ...

    @abstractmethod
    def _read_directory(self, prompt: str, default: Optional[str]) -> str:
        ...
