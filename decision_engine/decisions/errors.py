"""
Decision engine error taxonomy.

Every rejection the engine can produce is a ``DecisionError`` subclass with a
specific, user-facing message and the HTTP status the service layer returns
for it.  Conflicts that the conditional-write rules absorb (a lost resolution
race, a replaced ballot) are never raised.
"""

from __future__ import annotations


class DecisionError(Exception):
    status_code: int = 400
    default_message: str = "Invalid decision request"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


# ── Input errors ─────────────────────────────────────────────────────────


class InvalidRequestError(DecisionError):
    status_code = 400


class InvalidBallotError(DecisionError):
    status_code = 400
    default_message = "Invalid ballot"


class DecisionNotFoundError(DecisionError):
    status_code = 404
    default_message = "Decision not found"


class CollectionNotFoundError(DecisionError):
    status_code = 404
    default_message = "Collection not found"


class GroupNotFoundError(DecisionError):
    status_code = 404
    default_message = "Group not found"


class NotParticipantError(DecisionError):
    status_code = 403
    default_message = "User is not a participant in this decision"


# ── State errors ─────────────────────────────────────────────────────────


class DecisionClosedError(DecisionError):
    status_code = 409
    default_message = "Decision is no longer active"


class DeadlinePassedError(DecisionError):
    status_code = 409
    default_message = "Decision deadline has passed"


class AlreadyResolvedError(DecisionError):
    status_code = 409
    default_message = "Decision already resolved"


class NotCompletedError(DecisionError):
    status_code = 409
    default_message = "Only completed decisions can be edited or deleted"


class EmptyCollectionError(DecisionError):
    status_code = 409
    default_message = "No restaurants in collection"


# ── Collaborator failures ────────────────────────────────────────────────


class StoreTimeoutError(DecisionError):
    """Persistence call exceeded its timeout; safe to retry."""

    status_code = 503
    default_message = "Decision store timed out, please retry"
    retryable = True
