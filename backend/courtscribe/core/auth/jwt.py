"""JWT token utilities."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from jose import JWTError, jwt

from courtscribe.config import settings


@dataclass(frozen=True)
class TokenPayload:
    """Claims the transcription API relies on."""

    user_id: str
    organization_id: str | None


def create_access_token(
    user_id: str,
    organization_id: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create JWT access token carrying the user and the active organization."""
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.jwt_access_token_expire_minutes)

    to_encode = {
        "sub": str(user_id),
        "exp": expire,
        "type": "access",
    }
    if organization_id is not None:
        to_encode["org"] = str(organization_id)

    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def verify_token(token: str, token_type: str = "access") -> TokenPayload | None:
    """
    Verify JWT token and return its claims.
    Returns None if token is invalid.
    """
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )

        user_id: str | None = payload.get("sub")
        if user_id is None:
            return None

        if payload.get("type") != token_type:
            return None

        return TokenPayload(user_id=user_id, organization_id=payload.get("org"))

    except JWTError:
        return None
