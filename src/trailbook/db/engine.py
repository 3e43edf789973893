"""SQLModel engine singleton and session dependency."""
from typing import Generator

from sqlmodel import Session, SQLModel, create_engine

from trailbook.config import get_settings

_engine = None


def get_engine():
    """Return the module-level engine, creating it on first call."""
    global _engine
    if _engine is None:
        settings = get_settings()
        connect_args = {}
        if settings.database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False  # shared by bot, scheduler and API
        _engine = create_engine(settings.database_url, connect_args=connect_args)
        init_db(_engine)
    return _engine


def init_db(engine) -> None:
    """Create missing tables, then bring existing ones up to date."""
    # Import all models so metadata is populated before create_all
    from trailbook.models.activity import Activity  # noqa
    from trailbook.models.profile import UserProfile  # noqa
    from trailbook.models.spot import SavedSpot  # noqa
    from trailbook.models.trip import Trip, TripItem, TripItemRejection, TripTag  # noqa
    SQLModel.metadata.create_all(engine)
    from trailbook.db.migrations import run_migrations
    run_migrations(engine)


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a DB session."""
    with Session(get_engine()) as session:
        yield session
