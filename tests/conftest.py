"""Shared test fixtures."""
from typing import Generator, List, Optional, Tuple

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from trailbook.models.activity import Activity  # noqa: F401
from trailbook.models.profile import UserProfile  # noqa: F401
from trailbook.models.spot import SavedSpot  # noqa: F401
from trailbook.models.trip import Trip, TripItem, TripItemRejection, TripTag  # noqa: F401
from trailbook.trips.store import TripStore


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="store")
def store_fixture(engine) -> TripStore:
    return TripStore(engine)


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePrompter:
    """
    Scripted user-interaction gateway.

    ``choices`` / ``confirms`` are consumed in order; when exhausted, choose()
    answers None and confirm() answers False (the timeout defaults).
    """

    def __init__(self, choices: Optional[List[str]] = None, confirms: Optional[List[bool]] = None):
        self.choices = list(choices or [])
        self.confirms = list(confirms or [])
        self.questions: List[Tuple[str, str, list]] = []
        self.confirmations: List[Tuple[str, str]] = []
        self.notifications: List[str] = []

    async def choose(self, title, message, options):
        self.questions.append((title, message, list(options)))
        return self.choices.pop(0) if self.choices else None

    async def confirm(self, title, message):
        self.confirmations.append((title, message))
        return self.confirms.pop(0) if self.confirms else False

    async def notify(self, message):
        self.notifications.append(message)


@pytest.fixture(name="clock")
def clock_fixture() -> FakeClock:
    return FakeClock()


@pytest.fixture(name="prompter")
def prompter_fixture() -> FakePrompter:
    return FakePrompter()


@pytest.fixture(name="make_prompter")
def make_prompter_fixture():
    """Factory for prompters with scripted answers: make_prompter(choices=[...], confirms=[...])."""
    return FakePrompter
