"""
Bearer token authentication for the REST surface.

Tokens are HS256 JWTs signed with ``jwt_secret_key``. A missing token yields
the anonymous principal; an invalid one is rejected with 401.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import Request
from jose import JWTError, jwt

from ..core.errors import UnauthorizedError
from ..runtime.context import Principal

logger = logging.getLogger(__name__)


def principal_from_claims(claims: dict[str, Any], token: Optional[str] = None) -> Principal:
    """Map JWT claims onto a Principal (``sub``/``id``, ``roles``, ``system``)."""
    user_id = claims.get("sub", claims.get("id", claims.get("userId")))
    roles = claims.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    roles = [role.get("name") if isinstance(role, dict) else role for role in roles]
    return Principal(
        id=str(user_id) if user_id is not None else None,
        roles=[str(role) for role in roles if role],
        system=bool(claims.get("system", False)),
        token=token,
        claims=claims,
    )


def decode_bearer_token(token: str, secret_key: str, algorithm: str = "HS256") -> Principal:
    """
    Decode a bearer token into a Principal.

    Raises:
        UnauthorizedError: if the token is malformed, expired or badly signed
    """
    try:
        claims = jwt.decode(token, secret_key, algorithms=[algorithm])
    except JWTError as e:
        logger.debug(f"Rejected bearer token: {e}")
        raise UnauthorizedError("Invalid bearer token")
    return principal_from_claims(claims, token)


async def get_principal(request: Request) -> Principal:
    """FastAPI dependency resolving the caller from the Authorization header."""
    header = request.headers.get("Authorization")
    if not header:
        return Principal.anonymous()

    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise UnauthorizedError("Invalid authorization header")

    settings = request.app.state.settings
    return decode_bearer_token(token.strip(), settings.jwt_secret_key, settings.jwt_algorithm)
