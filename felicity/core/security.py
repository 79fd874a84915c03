from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt

from felicity.core.config import settings

# Claims every access token must carry
_REQUIRED_CLAIMS = ["sub", "role", "exp"]


class TokenError(Exception):
    pass


@dataclass(frozen=True)
class Actor:
    """Resolved identity of the caller: user id plus role."""

    id: int
    role: str


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, password_hash: str) -> bool:
    # A malformed stored hash counts as a mismatch
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        return False


def create_access_token(*, user_id: int, role: str) -> str:
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "role": role,
        "type": "access",
        "iat": issued,
        "exp": issued + timedelta(minutes=settings.JWT_ACCESS_MINUTES),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def user_id_from_token(token: str) -> int:
    """Verify an access token and return the user id in its `sub` claim.

    The role claim is informational; the role on the stored user wins.
    """
    try:
        claims = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALG],
            options={"require": _REQUIRED_CLAIMS},
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise TokenError("Invalid token") from e

    if claims.get("type") != "access":
        raise TokenError("Not an access token")

    sub = claims["sub"]
    if not isinstance(sub, str) or not sub.isdigit():
        raise TokenError("Invalid user id in token")
    return int(sub)
