"""
Application errors

Every error raised by the services maps onto one HTTP status. The handlers in
main.py render them as ``{"message": ...}`` plus ``errors`` / ``field`` when set.
"""
from typing import List, Optional


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors

    def to_dict(self) -> dict:
        body = {"message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class InvalidInput(AppError):
    status_code = 400


class Unavailable(AppError):
    status_code = 400


class Conflict(AppError):
    """Duplicate value for a unique field."""
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.field:
            body["field"] = self.field
        return body


class Unauthorized(AppError):
    status_code = 401


class Forbidden(AppError):
    status_code = 403


class NotFound(AppError):
    status_code = 404
