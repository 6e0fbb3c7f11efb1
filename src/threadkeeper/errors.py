from abc import ABC


class UserError(ABC, Exception):
    """Base class for user-related errors.

    All errors that inherit from UserError will have their messages
    displayed to the user. These errors should not contain any
    sensitive information.
    """


class NotFoundError(UserError):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str = "Document not found") -> None:
        super().__init__(message)


class ValidationError(UserError):
    """Raised when user input fails validation."""


class UnavailableError(UserError):
    """Base class for errors caused by a backing store being out of reach."""


class AllocatorUnavailableError(UnavailableError):
    """Raised when the counter store cannot hand out a number in time.

    The caller must not synthesize a number itself.
    """

    def __init__(self, message: str = "Number allocator is unavailable") -> None:
        super().__init__(message)


class BacklogFullError(UnavailableError):
    """Raised when the creation backlog is over its limit and new work is rejected."""

    def __init__(self, message: str = "Creation backlog is full, try again later") -> None:
        super().__init__(message)


class SearchUnavailableError(UnavailableError):
    """Raised when the search index cannot be queried."""

    def __init__(self, message: str = "Search is unavailable") -> None:
        super().__init__(message)


class DuplicateNumberError(Exception):
    """Raised when a creation task hits the (parent, number) unique index.

    Either the allocator handed the same number out twice or an already
    applied task was replayed. Both cases go through the retry subsystem.
    """


class IndexingError(Exception):
    """Raised when the search index rejects a write."""


class ReconciliationRaceError(Exception):
    """Raised when a cached count could not be overwritten because it kept changing underneath."""
