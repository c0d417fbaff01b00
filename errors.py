"""
Domain errors raised by the service layer.

Each error carries the HTTP status the API layer maps it to; the message is
meant to be shown to the user as-is.
"""


class DomainError(Exception):
    """Base class for business rule failures"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(DomainError):
    """A referenced record does not exist (or is not visible)"""

    status_code = 404


class ValidationError(DomainError):
    """A business rule was violated"""

    status_code = 400


class ConflictError(DomainError):
    """A uniqueness constraint would be violated"""

    status_code = 409
