"""Application errors and response helpers."""

from typing import Any, Dict

from fastapi import status


class AppError(Exception):
    """Base application error."""

    def __init__(self, message: str, code: str, http_status: int = 400):
        """Initialize error."""
        self.message = message
        self.code = code
        self.http_status = http_status
        super().__init__(message)


class InvalidInputError(AppError):
    """Malformed month key, negative rent, missing month/wing and the like."""

    def __init__(self, message: str = "Invalid input"):
        super().__init__(message, "invalid_input", status.HTTP_400_BAD_REQUEST)


class NotFoundError(AppError):
    """Entity targeted by a mutating operation does not exist."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message, "not_found", status.HTTP_404_NOT_FOUND)


class AttachmentStorageError(Exception):
    """Attachment could not be written to or removed from storage."""

    pass


def error_response(error: AppError) -> Dict[str, Any]:
    """Create a standardized error response."""
    return {
        "error": {
            "code": error.code,
            "message": error.message,
        }
    }


__all__ = [
    "AppError",
    "AttachmentStorageError",
    "InvalidInputError",
    "NotFoundError",
    "error_response",
]
