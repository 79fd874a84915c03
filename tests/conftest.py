"""Shared fixtures: a throwaway SQLite database per test plus small builders
for users, profiles and events."""

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import felicity.models  # noqa: F401
from felicity.core.db import Base
from felicity.core.security import Actor, hash_password
from felicity.core.timeutil import utcnow
from felicity.models.event import Event, MerchItem, MerchVariant
from felicity.models.profiles import Organiser, Participant
from felicity.models.user import User

PASSWORD = "secret123"
PASSWORD_HASH = hash_password(PASSWORD)


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'felicity-test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


class Builder:
    """Creates rows directly, bypassing the services under test."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._seq = 0

    def _email(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}{self._seq}@example.com"

    async def user(self, role: str, email: str | None = None) -> User:
        user = User(email=email or self._email(role), password_hash=PASSWORD_HASH, role=role)
        self.db.add(user)
        await self.db.flush()
        return user

    async def organiser(self, name: str = "Robotics Club", webhook: str | None = None) -> Organiser:
        user = await self.user("organiser")
        organiser = Organiser(user_id=user.id, name=name, discord_webhook=webhook)
        self.db.add(organiser)
        await self.db.commit()
        return organiser

    async def participant(
        self, first_name: str = "Asha", participant_type: str = "internal"
    ) -> Participant:
        user = await self.user("participant")
        participant = Participant(
            user_id=user.id,
            first_name=first_name,
            last_name="Rao",
            participant_type=participant_type,
        )
        self.db.add(participant)
        await self.db.commit()
        return participant

    async def admin(self) -> User:
        user = await self.user("admin")
        await self.db.commit()
        return user

    async def event(self, organiser: Organiser, **overrides) -> Event:
        now = utcnow()
        values = dict(
            organiser_id=organiser.id,
            status="published",
            published_at=now,
            name="Hack Night",
            description="Overnight hackathon",
            event_type="normal",
            fee=0,
            category="tech",
            eligibility="both",
            registration_deadline=now + timedelta(days=1),
            start_time=now + timedelta(days=2),
            end_time=now + timedelta(days=3),
            reg_limit=50,
            tags=["hackathon", "coding"],
            custom_form=[],
        )
        values.update(overrides)
        event = Event(**values)
        self.db.add(event)
        await self.db.commit()
        await self.db.refresh(event)
        return event

    async def update(self, obj, **values):
        for key, value in values.items():
            setattr(obj, key, value)
        await self.db.commit()
        await self.db.refresh(obj)
        return obj

    async def merch_event(
        self,
        organiser: Organiser,
        *,
        stock: int = 2,
        purchase_limit: int = 2,
        **overrides,
    ) -> Event:
        overrides.setdefault("name", "Club Merch")
        overrides.setdefault("event_type", "merchandise")
        overrides.setdefault("fee", 500)
        event = await self.event(organiser, **overrides)
        item = MerchItem(
            event_id=event.id,
            position=0,
            name="Hoodie",
            purchase_limit=purchase_limit,
            variants=[MerchVariant(position=0, label="M", stock=stock)],
        )
        self.db.add(item)
        await self.db.commit()
        await self.db.refresh(event)
        return event


@pytest.fixture
async def build(session_factory):
    # Own session, so rollbacks inside the services under test never expire these rows
    async with session_factory() as session:
        yield Builder(session)


def actor_for(profile) -> Actor:
    """Actor for an Organiser/Participant profile or a User."""
    if isinstance(profile, User):
        return Actor(id=profile.id, role=profile.role)
    role = "organiser" if isinstance(profile, Organiser) else "participant"
    return Actor(id=profile.user_id, role=role)


@pytest.fixture
def as_actor():
    return actor_for
