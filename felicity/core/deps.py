from __future__ import annotations

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from felicity.core.db import get_db
from felicity.core.errors import Unauthorized
from felicity.core.security import Actor, TokenError, user_id_from_token
from felicity.models.profiles import Organiser
from felicity.models.user import User
from felicity.services.profiles import find_organiser

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


async def load_active_user(db: AsyncSession, token: str | None) -> User:
    """Resolve a bearer token to an active user.

    Shared by the HTTP dependencies and the forum socket handshake.
    """
    if not token:
        raise Unauthorized("Missing bearer token")

    try:
        user_id = user_id_from_token(token)
    except TokenError as e:
        raise Unauthorized("Invalid or expired token") from e

    res = await db.execute(select(User).where(User.id == user_id))
    user = res.scalar_one_or_none()

    if not user:
        raise Unauthorized("User not found")
    if not user.is_active:
        raise Unauthorized("User inactive")

    return user


async def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    try:
        return await load_active_user(db, token)
    except Unauthorized as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_current_actor(current_user: User = Depends(get_current_user)) -> Actor:
    return Actor(id=current_user.id, role=current_user.role)


def require_organiser(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.role != "organiser":
        raise HTTPException(status_code=403, detail="Organiser only")
    return actor


def require_participant(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.role != "participant":
        raise HTTPException(status_code=403, detail="Participant only")
    return actor


async def get_current_organiser(
    actor: Actor = Depends(require_organiser),
    db: AsyncSession = Depends(get_db),
) -> Organiser:
    organiser = await find_organiser(db, actor.id)
    if organiser is None:
        raise HTTPException(status_code=404, detail="Organiser not found")
    return organiser
