"""Error taxonomy of the messaging core.

Store and service code raise these; the API layer turns them into responses
(see ``messenger.error_handlers``). ``NotFoundError`` is used both for missing
rows and for rows the caller may not see, so existence never leaks.
"""
from typing import Dict, Optional


class MessagingError(Exception):
    """Base exception for the messaging core"""
    status_code: int = 500

    def __init__(self, message: str, headers: Optional[Dict[str, str]] = None):
        self.message = message
        self.headers = headers
        super().__init__(self.message)


class UnauthenticatedError(MessagingError):
    status_code = 401

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"})


class NotFoundError(MessagingError):
    status_code = 404


class ValidationError(MessagingError):
    status_code = 400


class ConflictError(MessagingError):
    """Duplicate insert lost a race; callers retry their lookup."""
    status_code = 409


class InternalError(MessagingError):
    status_code = 500
