"""
Canopy Backend - Bearer Token Authentication
==============================================

What:  Turns the `Authorization: Bearer <jwt>` header into an Actor.
Why:   Every history and subject route needs to know who is acting, both to
       check project membership and to stamp addedBy/updatedBy.
How:   PyJWT verifies the signature and expiry with the configured secret.
       The user id comes from the `userId` claim, falling back to `sub`.
Who:   Route handlers via Depends(get_current_actor).

Token issuance belongs to the identity service. issue_token() exists for
tests and local tooling only and is not exposed over HTTP.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Header

from canopy.config import settings
from canopy.exceptions import AuthenticationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of a request."""

    user_id: str


def decode_token(token: str) -> Actor:
    """
    Verify a JWT and extract the actor.

    Raises:
        AuthenticationError: bad signature, expired, or no user id claim.
    """
    try:
        payload: Dict[str, Any] = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError(message="Token has expired")
    except jwt.InvalidTokenError as e:
        logger.info("Rejected bearer token: %s", e)
        raise AuthenticationError(message="Invalid token")

    user_id = payload.get("userId") or payload.get("sub")
    if not user_id:
        raise AuthenticationError(message="Invalid token (missing user id)")
    return Actor(user_id=str(user_id))


async def get_current_actor(
    authorization: Optional[str] = Header(default=None),
) -> Actor:
    """FastAPI dependency: require a valid bearer token on the request."""
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError(message="Missing Bearer token")
    return decode_token(authorization.split(" ", 1)[1].strip())


def issue_token(user_id: str, expires_in: timedelta = timedelta(hours=1)) -> str:
    now = datetime.now(timezone.utc)
    payload = {"userId": user_id, "sub": user_id, "iat": now, "exp": now + expires_in}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
