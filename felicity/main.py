from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# IMPORTANT:
# This imports ALL models so SQLAlchemy registers tables + FKs correctly
import felicity.models  # noqa: F401

from felicity.core.config import settings
from felicity.core.db import create_all
from felicity.core.log import configure_logging
from felicity.integrations.announce_client import PublishAnnouncer
from felicity.realtime.broadcaster import InMemoryBroadcaster

# Routers
from felicity.routers.auth import router as auth_router
from felicity.routers.organiser_events import router as organiser_events_router
from felicity.routers.events import router as events_router
from felicity.routers.participant import router as participant_router
from felicity.routers.forum import router as forum_router
from felicity.routers.forum_ws import router as forum_ws_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()

    if settings.DB_CREATE_ALL:
        await create_all()

    broadcaster = InMemoryBroadcaster()
    await broadcaster.init()
    app.state.broadcaster = broadcaster
    app.state.announcer = PublishAnnouncer()

    try:
        yield
    finally:
        await app.state.announcer.shutdown()
        await broadcaster.shutdown()


def create_app() -> FastAPI:
    app = FastAPI(title="Felicity", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Auth
    app.include_router(auth_router)

    # Organiser
    app.include_router(organiser_events_router)

    # Participant
    app.include_router(events_router)
    app.include_router(participant_router)

    # Forum
    app.include_router(forum_router)
    app.include_router(forum_ws_router)

    return app


app = create_app()
