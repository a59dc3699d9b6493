from fastapi import status
from typing import Any, List, Optional


class APIError(Exception):
    """Base for every error that is reported to the caller with a stable kind."""

    kind = "api_error"

    def __init__(self, status_code: int, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.errors = errors or []


class ValidationError(APIError):
    kind = "validation_error"

    def __init__(self, message: str, errors: Optional[List[Any]] = None):
        super().__init__(status.HTTP_400_BAD_REQUEST, message, errors)


class NotFound(APIError):
    kind = "not_found"

    def __init__(self, message: str = "Resource not found"):
        super().__init__(status.HTTP_404_NOT_FOUND, message)


class Conflict(APIError):
    kind = "conflict"

    def __init__(self, message: str):
        super().__init__(status.HTTP_409_CONFLICT, message)


class DuplicateIdentifier(APIError):
    """An identifier was taken by a concurrent writer between check and commit."""

    kind = "duplicate_identifier"

    def __init__(self, field: str, value: Optional[str] = None):
        message = f"Could not allocate a unique {field}"
        if value:
            message = f"{message}: '{value}' is already taken"
        super().__init__(status.HTTP_409_CONFLICT, message, [{"field": field}])
        self.field = field
        self.value = value


class Unauthorized(APIError):
    kind = "unauthorized"

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(status.HTTP_401_UNAUTHORIZED, message)


class Forbidden(APIError):
    kind = "forbidden"

    def __init__(self, message: str = "Access denied"):
        super().__init__(status.HTTP_403_FORBIDDEN, message)


class StoreUnavailable(APIError):
    kind = "store_unavailable"

    def __init__(self, message: str = "Catalog store is unavailable. Please try again later."):
        super().__init__(status.HTTP_503_SERVICE_UNAVAILABLE, message)


class MediaUploadFailed(APIError):
    kind = "media_upload_failed"

    def __init__(self, message: str = "Image upload failed. Please try again."):
        super().__init__(status.HTTP_502_BAD_GATEWAY, message)


class CacheUnavailable(Exception):
    """Raised by cache adapters. Never reaches a caller: reads degrade to a miss, writes are dropped."""
