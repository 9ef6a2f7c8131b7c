"""
Fixtures communes : base SQLite jetable, horloge contrôlée,
enregistreur d'événements et service prêt à l'emploi.
"""
import os

# avant tout import du service : pas de PostgreSQL ni de RabbitMQ en test
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PUBLISH_EVENTS", "0")

from datetime import date, datetime, timedelta, timezone

import pytest
from sqlmodel import Session, SQLModel

from api import make_engine
from config import BookingRules, PenaltyRules
from models import ReservationCreate
from repository import ReservationRepository
from service import ReservationService

START = datetime(2025, 11, 20, 12, 0, tzinfo=timezone.utc)
BRANCH = "Mong Kok Branch"
DAY = date(2025, 12, 24)


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class EventRecorder:
    def __init__(self):
        self.events = []

    def __call__(self, event_type: str, payload: dict) -> bool:
        self.events.append((event_type, payload))
        return True

    def types(self):
        return [t for t, _ in self.events]


def booking(branch=BRANCH, day=DAY, time="18:00", adults=2, children=0) -> ReservationCreate:
    return ReservationCreate(branch=branch, date=day, time=time, adults=adults, children=children)


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'reservation.db'}")
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def repo(session) -> ReservationRepository:
    return ReservationRepository(session)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def service(repo, clock, recorder) -> ReservationService:
    return ReservationService(repo, BookingRules(), PenaltyRules(), clock=clock, publish=recorder)


@pytest.fixture
def user(repo):
    return repo.create_user("Alice", "alice@example.com")
