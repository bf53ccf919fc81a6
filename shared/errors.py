"""
Shared error handling for the Site Index services.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AccessLayerException(Exception):
    """Base exception for Site Index services."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    status_code = 422

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ItemNotFoundError(AccessLayerException):
    """Raised by the repository when an index item does not exist."""

    status_code = 404

    def __init__(self, item_id: int, details: Optional[Dict[str, Any]] = None):
        self.item_id = item_id
        super().__init__("ITEM_NOT_FOUND", f"Index item {item_id} not found", details)


class ExternalServiceError(AccessLayerException):
    """External service errors."""

    status_code = 502

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class CacheError(ExternalServiceError):
    """Remote cache tier failure. Never surfaced to end users."""

    def __init__(self, message: str = "Remote cache unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("remote_cache", message, details)
