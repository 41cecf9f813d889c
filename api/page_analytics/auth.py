from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .utils.path_classifier import UserContext

# Security scheme for Bearer token
oauth2_scheme = HTTPBearer(auto_error=False)

# JWT Configuration
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
if not JWT_SECRET_KEY:
    raise RuntimeError(
        "JWT_SECRET_KEY environment variable is required but not set. "
        "Generate a secure key with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
    )
# Validate minimum key length (256 bits = 32 bytes)
if len(JWT_SECRET_KEY) < 32:
    raise RuntimeError(
        "JWT_SECRET_KEY is too short. Must be at least 32 characters long. "
        "Generate a secure key with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
    )
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("JWT_ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

# Role required for reports and maintenance endpoints
ADMIN_ROLE = os.getenv("PAGE_ANALYTICS_ADMIN_ROLE", "administrator")


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as described by the access token."""
    user_id: str
    roles: frozenset[str] = field(default_factory=frozenset)

    def to_user_context(self) -> UserContext:
        return UserContext.authenticated(self.roles)


def create_access_token(user_id: str, roles: list[str] | None = None, expires_in_seconds: int | None = None) -> str:
    """
    Create a JWT access token carrying the user's roles.
    """
    if expires_in_seconds is None:
        expires_in_seconds = JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60

    now = datetime.now(timezone.utc).replace(tzinfo=None)
    payload = {
        "user_id": str(user_id),
        "roles": list(roles or []),
        "exp": now + timedelta(seconds=expires_in_seconds),
        "iat": now,
        "type": "access",
    }

    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_principal(token: str) -> Principal:
    """
    Decode and verify an access token.

    Raises:
        jwt.InvalidTokenError: if the token is invalid, expired or has no user_id
    """
    payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    user_id = payload.get("user_id")
    if not user_id:
        raise jwt.InvalidTokenError("missing user_id")
    roles = payload.get("roles") or []
    if not isinstance(roles, list):
        roles = []
    return Principal(user_id=str(user_id), roles=frozenset(r for r in roles if isinstance(r, str)))


def user_context_from_request(request: Request) -> UserContext:
    """
    Resolve the exclusion-rule view of the caller from the Authorization header.

    Missing or invalid tokens count as anonymous; tracking never rejects a request.
    """
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return UserContext.anonymous()
    try:
        return decode_principal(token.strip()).to_user_context()
    except jwt.InvalidTokenError:
        return UserContext.anonymous()


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(oauth2_scheme),
) -> Principal:
    """
    Get current authenticated caller from Bearer token.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return decode_principal(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired"
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )


def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    """
    Require that the caller has the analytics admin role.
    """
    if ADMIN_ROLE not in principal.roles:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"{ADMIN_ROLE.capitalize()} role required"
        )
    return principal
