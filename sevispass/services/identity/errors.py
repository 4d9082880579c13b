"""
Exception taxonomy for the identity verification pipeline.

Quality failures and decision outcomes (reject / manual review) are NOT
exceptions; they are returned as typed results. The classes here cover the
cases a caller must be able to tell apart from a legitimate rejection.
"""
from typing import Optional


class SevisPassError(Exception):
    """Base class for all pipeline errors."""
    pass


class InputValidationError(SevisPassError):
    """Malformed or missing caller input. Never reaches the decision policy."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class ExternalServiceError(SevisPassError):
    """A managed service failed or is unavailable. Safe to retry."""

    def __init__(self, service: str, operation: str, message: Optional[str] = None):
        self.service = service
        self.operation = operation
        super().__init__(message or f"{service} {operation} failed")


class ServiceTimeoutError(ExternalServiceError):
    """A managed service did not answer within its timeout."""

    def __init__(self, service: str, operation: str):
        super().__init__(service, operation, f"{service} {operation} timed out")


class EnrollmentError(SevisPassError):
    """The face collection could not extract an indexable face."""
    pass


class ConsistencyError(SevisPassError):
    """Holder and application records could not be kept in step. Alertable."""

    def __init__(self, application_id: str, message: str):
        super().__init__(message)
        self.application_id = application_id


class RecordNotFoundError(SevisPassError):
    pass


class ApplicationNotFoundError(RecordNotFoundError):
    pass


class HolderNotFoundError(RecordNotFoundError):
    pass


class InvalidTransitionError(SevisPassError):
    """Requested status change is not allowed from the stored status."""

    def __init__(self, application_id: str, current: str, requested: str):
        super().__init__(
            f"Application {application_id} cannot move from {current} to {requested}"
        )
        self.application_id = application_id
        self.current = current
        self.requested = requested


class ResubmissionBlockedError(SevisPassError):
    """The user already has an application that is in flight or approved."""

    def __init__(self, application_id: str, status: str):
        super().__init__(
            f"An application ({application_id}) is already {status}; resubmission is not allowed"
        )
        self.application_id = application_id
        self.status = status


class DuplicateRecordError(SevisPassError):
    """Record store refused a write that would break a uniqueness rule."""
    pass


class IdentifierTakenError(DuplicateRecordError):
    """The issued identifier already belongs to another application."""

    def __init__(self, issued_id: str):
        super().__init__(f"Identifier {issued_id} already issued")
        self.issued_id = issued_id
