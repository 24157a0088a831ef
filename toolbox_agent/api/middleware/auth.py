"""JWT authentication for control-plane requests."""

import os
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from toolbox_agent.api.dependencies import SettingsDep
from toolbox_agent.api.models.context import CallerContext
from toolbox_agent.observability.logging import get_logger

logger = get_logger(__name__)

# Security scheme for OpenAPI docs
security_scheme = HTTPBearer(auto_error=False)

OWNER_HEADER = "X-Account-Tool-Instance-Id"


def get_jwt_secret() -> str:
    """Get JWT secret from environment."""
    secret = os.environ.get("TOOLBOX_AGENT_JWT_SECRET")
    if not secret:
        raise RuntimeError("TOOLBOX_AGENT_JWT_SECRET environment variable not set")
    return secret


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_caller_context(
    request: Request,
    settings: SettingsDep,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)],
    owner: Annotated[str | None, Header(alias=OWNER_HEADER)] = None,
) -> CallerContext:
    """Validate the bearer token and collect the caller's claimed owner.

    A token may pin the owner with an ``account_tool_instance_id`` claim,
    in which case the header must agree with it.

    Raises:
        HTTPException: 401 if the token is missing, invalid or expired, or
            the claimed owner contradicts the token
    """
    if credentials is None:
        logger.warning("auth_missing_token", path=request.url.path)
        raise _unauthorized("Missing authentication token")

    try:
        payload = jwt.decode(
            credentials.credentials,
            get_jwt_secret(),
            algorithms=[settings.api.jwt_algorithm],
        )
    except JWTError as e:
        logger.warning("auth_jwt_error", error=str(e), path=request.url.path)
        raise _unauthorized("Invalid or expired token") from None

    pinned_owner = payload.get("account_tool_instance_id")
    if pinned_owner and owner and pinned_owner != owner:
        logger.warning("auth_owner_mismatch", path=request.url.path)
        raise _unauthorized("Owner header does not match token")

    context = CallerContext(subject=payload.get("sub"), owner=owner or pinned_owner)
    logger.debug("auth_success", subject=context.subject, owner=context.owner)
    return context


# Type alias for dependency injection
CallerContextDep = Annotated[CallerContext, Depends(get_caller_context)]
