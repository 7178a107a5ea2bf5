"""Domain errors raised by the loan lifecycle services."""

from typing import Optional


class LoanServiceError(Exception):
    """Base class for errors translated into coded results."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class NotFoundError(LoanServiceError):
    """A referenced reservation, loan, user or device does not exist."""

    def __init__(self, resource: str, identifier: str = ""):
        super().__init__(f"{resource} not found")
        self.resource = resource
        self.identifier = identifier


class ValidationError(LoanServiceError):
    """Invalid state transition or missing input."""

    pass


class ConflictError(LoanServiceError):
    """The requested transition was already applied (duplicate collection)."""

    pass


class OperationFailedError(LoanServiceError):
    """Wraps an unexpected fault from a collaborator."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.cause = cause
