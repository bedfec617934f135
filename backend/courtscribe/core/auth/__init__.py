"""Authentication module."""

from courtscribe.core.auth.dependencies import (
    CurrentTenant,
    CurrentTenantFromQueryToken,
    TenantContext,
    authenticate_websocket_token,
    get_current_tenant,
)
from courtscribe.core.auth.jwt import TokenPayload, create_access_token, verify_token

__all__ = [
    "CurrentTenant",
    "CurrentTenantFromQueryToken",
    "TenantContext",
    "TokenPayload",
    "authenticate_websocket_token",
    "create_access_token",
    "get_current_tenant",
    "verify_token",
]
