import os

import pytest

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from clinic_scheduler.database import build_engine, build_session_factory, init_db  # noqa: E402
from clinic_scheduler.models.doctor import Doctor  # noqa: E402
from clinic_scheduler.scheduling.notifications import NotificationKind  # noqa: E402


class RecordingDispatcher:
    """Collects events synchronously instead of handing them to a worker pool."""

    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)
        return None

    def notify_all(self, events):
        self.events.extend(events)
        return []

    def shutdown(self, wait: bool = True) -> None:
        pass

    def kinds(self) -> list[NotificationKind]:
        return [event.kind for event in self.events]


@pytest.fixture
def engine(tmp_path):
    # File-backed so worker threads share one database.
    engine = build_engine(f'sqlite:///{tmp_path / "scheduler.db"}')
    init_db(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def doctor(session_factory) -> Doctor:
    with session_factory() as db, db.begin():
        doctor = Doctor(name='Dr. Grey', speciality='General', fee_amount=500, available=True)
        db.add(doctor)
        db.flush()
    return doctor


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()
