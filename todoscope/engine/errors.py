"""Exception types raised by the search engine."""


class TodoscopeError(Exception):
    """Base class for todoscope errors."""


class NoResultsError(TodoscopeError):
    """No keyword occurrences were found in the searched scope."""

    def __init__(self, message: str = "No keyword occurrences found"):
        super().__init__(message)


class NarrowConfigError(TodoscopeError):
    """The other-bucket pair collides with the narrow mapping."""


class PickerCancelled(TodoscopeError):
    """The user aborted a picker."""


class PickerBusyError(TodoscopeError):
    """A picker was opened while another one is still reading input."""

    def __init__(self, message: str = "A picker is already active"):
        super().__init__(message)
