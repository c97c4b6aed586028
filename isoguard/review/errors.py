"""
Review error taxonomy.

Every failure raised by the review core derives from ReviewError so callers
(the HTTP layer, tests) can catch the family in one place. None of these
errors leaves the edit session in a partially mutated state.
"""
from typing import Optional


class ReviewError(Exception):
    """Base class for review-core failures."""


class NotFoundError(ReviewError):
    """A referenced finding, ledger entry or pending action does not exist."""

    def __init__(self, kind: str, ref: str):
        self.kind = kind
        self.ref = ref
        super().__init__(f"{kind} not found: {ref}")


class ActionNotFoundError(NotFoundError):
    def __init__(self, action_id: str):
        super().__init__("pending action", action_id)


class InvalidStateError(ReviewError):
    """Operation not supported by the current state of the data."""


class AlreadyInProgressError(ReviewError):
    """A single-flight operation was requested while one is running."""


class NothingToRegenerateError(ReviewError):
    """Regeneration needs unsaved edits and at least one finding."""


class ExternalCollaboratorError(ReviewError):
    """The AI provider failed (network, quota, empty or malformed response)."""

    def __init__(self, operation: str, message: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.provider_message = message
        self.cause = cause
        super().__init__(f"{operation} failed: {message}")
