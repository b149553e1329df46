"""
Exceptions used across the API

ApiError subclasses are rendered to the client by the handlers in main.py.
UploadError and NotificationError are contained by the order workflow; only
POST /api/upload turns an UploadError into a response.
"""
from typing import Any, Dict, List, Optional


class ApiError(Exception):
    """Base class for errors that map to an HTTP response"""
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationError(ApiError):
    """Malformed or incomplete request body"""
    status_code = 400

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None):
        self.details = details or []
        super().__init__(message)


class AuthenticationError(ApiError):
    status_code = 401


class ForbiddenError(ApiError):
    status_code = 403


class NotFoundError(ApiError):
    status_code = 404


class PersistenceError(ApiError):
    """The document store rejected or failed a write"""
    status_code = 500


class UploadError(Exception):
    """An image payload could not be stored"""


class InvalidImageError(UploadError):
    """The payload is not an accepted image, or points outside UPLOAD_DIR"""


class NotificationError(Exception):
    """An email could not be dispatched"""
