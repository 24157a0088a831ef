"""Error taxonomy for the toolbox agent.

All domain errors inherit from ToolboxAgentError, which carries a
machine-readable kind and the HTTP status the API layer renders it with.
Components raise these directly; the API exception handler turns them
into structured error bodies without stack traces.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Machine-readable error kinds surfaced to API callers."""

    VALIDATION = "ValidationError"
    """Bad request; never retried."""

    RUNTIME_TRANSIENT = "RuntimeTransientError"
    """Container daemon busy or socket hiccup, retries exhausted."""

    RUNTIME_FATAL = "RuntimeFatalError"
    """Bad image or spec rejected by the container engine."""

    CREDENTIAL_UNAVAILABLE = "CredentialUnavailable"
    """Credential broker unreachable or denied the request."""

    DISCOVERY_TIMEOUT = "DiscoveryTimeout"
    """MCP probe did not answer within its timeout."""

    CONFLICT = "Conflict"
    """Name or port collision."""

    NOT_FOUND = "NotFound"
    """No managed instance with the given name."""

    FORBIDDEN = "Forbidden"
    """Caller does not own the instance."""

    INTERNAL = "InternalError"
    """Unexpected failure."""


class ToolboxAgentError(Exception):
    """Base exception for all toolbox agent errors.

    Subclasses set kind and status_code. The global exception handler
    uses these to build the error response.
    """

    kind: ErrorKind = ErrorKind.INTERNAL
    status_code: int = 500

    def __init__(self, message: str, **details: Any) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(ToolboxAgentError):
    """Raised when a deploy request or override is malformed."""

    kind = ErrorKind.VALIDATION
    status_code = 400


class RuntimeTransientError(ToolboxAgentError):
    """Raised when the container engine keeps failing transiently."""

    kind = ErrorKind.RUNTIME_TRANSIENT
    status_code = 503


class RuntimeFatalError(ToolboxAgentError):
    """Raised when the container engine rejects a request outright."""

    kind = ErrorKind.RUNTIME_FATAL
    status_code = 502


class CredentialUnavailableError(ToolboxAgentError):
    """Raised when credentials cannot be fetched for a deploy or refresh."""

    kind = ErrorKind.CREDENTIAL_UNAVAILABLE
    status_code = 424

    def __init__(self, message: str, connection_id: str | None = None) -> None:
        if connection_id:
            super().__init__(message, connection_id=connection_id)
        else:
            super().__init__(message)
        self.connection_id = connection_id


class DiscoveryTimeoutError(ToolboxAgentError):
    """Raised when an MCP probe times out."""

    kind = ErrorKind.DISCOVERY_TIMEOUT
    status_code = 504


class ConflictError(ToolboxAgentError):
    """Raised on instance name or host port collisions."""

    kind = ErrorKind.CONFLICT
    status_code = 409


class ContainerAlreadyExistsError(ConflictError):
    """Raised when a running container already holds the requested name."""


class InstanceNotFoundError(ToolboxAgentError):
    """Raised when no managed instance has the given name."""

    kind = ErrorKind.NOT_FOUND
    status_code = 404

    def __init__(self, instance_name: str) -> None:
        super().__init__(f"Instance '{instance_name}' not found", instance_name=instance_name)
        self.instance_name = instance_name


class OwnershipError(ToolboxAgentError):
    """Raised when the caller's claimed owner does not match the instance."""

    kind = ErrorKind.FORBIDDEN
    status_code = 403

    def __init__(self, instance_name: str) -> None:
        super().__init__(
            f"Caller does not own instance '{instance_name}'",
            instance_name=instance_name,
        )
        self.instance_name = instance_name
