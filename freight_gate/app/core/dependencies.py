"""
Authentication dependencies for FastAPI.

This module provides dependencies for protecting routes with JWT authentication.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from freight_gate.app.core.jwt import decode_access_token

# HTTP Bearer security scheme
security = HTTPBearer()


def user_from_token(token: str) -> dict:
    """
    Validate a raw bearer token and return its payload.

    Shared by the HTTP dependency and the WebSocket handshake, which
    receives the token as a query parameter.

    Raises:
        HTTPException: 401 if the token is invalid or lacks a user id
    """
    payload = decode_access_token(token)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not payload.get("user_id"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    Returns:
        Decoded token payload containing user_id, sub and role
    """
    return user_from_token(credentials.credentials)
