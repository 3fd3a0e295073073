"""
Custom exceptions for the application
"""


class AppError(Exception):
    """Base class for errors that map to an HTTP status"""

    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(AppError):
    """Raised when input is missing or malformed"""

    status_code = 400


class AuthenticationError(AppError):
    """Raised when credentials or tokens are invalid"""

    status_code = 401


class AuthorizationError(AppError):
    """Raised when the caller may not act on a resource"""

    status_code = 403


class NotFoundError(AppError):
    """Raised when a resource does not exist"""

    status_code = 404


class ConflictError(AppError):
    """Raised on duplicates and lost concurrent updates"""

    status_code = 409


class AISuggestionError(Exception):
    """Raised when the AI provider call fails"""

    def __init__(self, message: str, provider: str = "gemini", original_error: Exception = None):
        self.message = message
        self.provider = provider
        self.original_error = original_error
        super().__init__(message)
