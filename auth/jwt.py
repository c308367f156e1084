"""
JWT Authentication Handler
Verifies HS256 bearer tokens (Authorization header or accessToken cookie)
and extracts the calling user.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import config

logger = logging.getLogger(__name__)
security = HTTPBearer(auto_error=False)

ACCESS_TOKEN_COOKIE = "accessToken"


@dataclass
class AuthenticatedUser:
    id: str
    username: Optional[str] = None
    role: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict)


def create_access_token(
    user_id: Any,
    username: Optional[str] = None,
    role: Optional[str] = None,
    expires_in: timedelta = timedelta(days=7),
) -> str:
    """Issue a token in the format verify_access_token accepts.

    This service never issues tokens itself; this exists for tests and local tooling.
    """
    if not config.security.jwt_secret:
        raise RuntimeError("JWT_SECRET is not configured")
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "username": username,
        "role": role,
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, config.security.jwt_secret, algorithm=config.security.jwt_algorithm)


def verify_access_token(token: str) -> AuthenticatedUser:
    """Decode a token or raise HTTPException(401)."""
    if not config.security.jwt_secret:
        logger.warning("JWT_SECRET not configured, cannot verify JWT")
        raise HTTPException(status_code=401, detail="Authentication unavailable")

    try:
        payload = jwt.decode(
            token,
            config.security.jwt_secret,
            algorithms=[config.security.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError:
        logger.warning("JWT token expired")
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid JWT token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub") or payload.get("id")
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid token")

    return AuthenticatedUser(
        id=str(user_id),
        username=payload.get("username"),
        role=payload.get("role"),
        claims=payload,
    )


async def require_user(
    request: Request,
    token: Optional[HTTPAuthorizationCredentials] = Security(security)
) -> AuthenticatedUser:
    """
    Resolve the calling user from the bearer token, falling back to the
    accessToken cookie. Raises 401 when neither is present or valid.
    """
    raw = token.credentials if token else request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not raw:
        raise HTTPException(status_code=401, detail="Not authenticated")

    user = verify_access_token(raw)
    request.state.user = {"id": user.id, "username": user.username, "role": user.role}
    return user
