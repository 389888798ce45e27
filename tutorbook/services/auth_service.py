"""
Bearer-token handling for the booking API.

Tokens are issued by the external identity service and signed with the
shared ``JWT_SECRET``. This module only verifies them and turns the claims
into an explicit ``Actor``. ``create_access_token`` exists for local
development and the test suite.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import jwt

from tutorbook.core.config import settings
from tutorbook.services.bookingStateManager import Actor, ActorRole

ACCESS_TOKEN_EXPIRE_MINUTES = 60


def create_access_token(
    user_id: uuid.UUID,
    role: ActorRole,
    expires_in: timedelta | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": ActorRole(role).value,
        "type": "access",
        "iat": now,
        "exp": now + (expires_in or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    """Decode and verify a JWT token.

    Raises:
        jwt.ExpiredSignatureError: If the token has expired.
        jwt.InvalidTokenError: If the token is otherwise invalid.
    """
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        options={"require": ["sub", "exp"]},
    )


def actor_from_token(token: str) -> Actor:
    """Resolve the acting user from a bearer token.

    Raises:
        ValueError: With a user-facing message when the token is unusable.
    """
    try:
        payload = decode_token(token)
    except jwt.ExpiredSignatureError:
        raise ValueError("Access token has expired.")
    except jwt.InvalidTokenError:
        raise ValueError("Invalid access token.")

    try:
        user_id = uuid.UUID(str(payload["sub"]))
        role = ActorRole(payload.get("role"))
    except (KeyError, ValueError):
        raise ValueError("Access token carries an invalid subject or role.")
    return Actor(id=user_id, role=role)
