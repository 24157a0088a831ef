"""Error response models for consistent API error handling."""

from typing import Any

from pydantic import BaseModel, Field

from toolbox_agent.errors import ErrorKind


class ErrorBody(BaseModel):
    """Error body content for API error responses."""

    kind: ErrorKind
    """Machine-readable error kind."""

    message: str
    """Human-readable error message."""

    details: dict[str, Any] = Field(default_factory=dict)
    """Structured context, e.g. the offending field or connection id."""


class ErrorResponse(BaseModel):
    """Standard error response format for all API errors.

    Example:
        {
            "success": false,
            "error": {
                "kind": "CredentialUnavailable",
                "message": "Connection conn-1 is revoked",
                "details": {"connectionId": "conn-1"}
            }
        }
    """

    success: bool = False
    error: ErrorBody
