"""FastAPI dependencies for authentication."""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from courtscribe.core.auth.jwt import verify_token

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class TenantContext:
    """Authenticated caller and the organization every query is scoped to."""

    user_id: str
    organization_id: str


def _tenant_from_token(token: str) -> TenantContext:
    payload = verify_token(token, token_type="access")
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not payload.organization_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No active organization",
        )

    return TenantContext(user_id=payload.user_id, organization_id=payload.organization_id)


async def get_current_tenant(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)] = None,
) -> TenantContext:
    """
    Get caller from the bearer JWT.
    Raises 401 if not authenticated, 403 without an organization.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _tenant_from_token(credentials.credentials)


async def get_tenant_from_query_token(
    token: str | None = Query(None, description="JWT access token"),
) -> TenantContext:
    """
    Get caller from the query parameter token.
    Used for SSE endpoints where EventSource doesn't support custom headers.
    """
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token required",
        )
    return _tenant_from_token(token)


def authenticate_websocket_token(token: str | None) -> TenantContext | None:
    """Resolve a WebSocket ?token=; None means the socket must be closed (1008)."""
    if not token:
        return None
    payload = verify_token(token, token_type="access")
    if payload is None or not payload.organization_id:
        return None
    return TenantContext(user_id=payload.user_id, organization_id=payload.organization_id)


# Type aliases for dependency injection
CurrentTenant = Annotated[TenantContext, Depends(get_current_tenant)]
CurrentTenantFromQueryToken = Annotated[TenantContext, Depends(get_tenant_from_query_token)]
