"""
Application errors

Every error raised by the marketplace, auth and assistant layers derives
from AppError so the server can render one JSON envelope for all of them.
"""
from typing import Optional

class AppError(Exception):
    """Base error carrying an HTTP status, a short label and a user-facing message"""

    status_code: int = 500
    error: str = "Internal error"

    def __init__(self, message: str, error: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if error is not None:
            self.error = error
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"success": False, "error": self.error, "message": self.message}

class ValidationFailed(AppError):
    status_code = 400
    error = "Invalid request"

class AuthenticationRequired(AppError):
    status_code = 401
    error = "Unauthorized"

    def __init__(self, message: str = "Please log in to access this resource"):
        super().__init__(message)

class InvalidCredentials(AppError):
    status_code = 401
    error = "Invalid credentials"

    def __init__(self, message: str = "Invalid username or password"):
        super().__init__(message)

class PermissionDenied(AppError):
    status_code = 403
    error = "Forbidden"

class NotFound(AppError):
    status_code = 404
    error = "Not found"

class Conflict(AppError):
    status_code = 409
    error = "Conflict"

class BiddingError(AppError):
    status_code = 400
    error = "Bid rejected"

class UnsupportedLanguage(ValidationFailed):
    error = "Unsupported language"

class AIServiceError(AppError):
    """The hosted AI API failed or returned something unusable"""
    status_code = 502
    error = "AI service error"
