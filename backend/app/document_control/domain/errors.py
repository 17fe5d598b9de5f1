from typing import Any


class DomainError(Exception):
    """Base domain error with a user-facing message."""

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = {key: value for key, value in context.items() if value is not None}
        super().__init__(message)


class PermissionDenied(DomainError):
    """Raised when the actor's role may not perform the action."""


class NotFound(DomainError):
    """Raised when a required entity is missing."""


class InvalidRequest(DomainError):
    """Raised when the input is malformed or conflicts with existing state."""


class InvalidTransition(DomainError):
    """Raised when an action is not legal from the current stage or status."""


class UnknownWorkflowDomain(DomainError):
    """Raised when no workflow definition is registered for a domain."""


class InvalidWorkflowDefinition(DomainError):
    """Raised when a workflow definition fails validation at load time."""


class SequenceConflict(DomainError):
    """Raised when a concurrent write violated a sequence uniqueness rule."""


class StaleWorkflowInstance(SequenceConflict):
    """Raised when a workflow instance changed since it was read."""


class ReservationExpired(DomainError):
    """Raised when a serial number reservation lapsed before consumption."""
