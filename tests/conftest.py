"""
Pytest configuration and fixtures.

Tests run against a throwaway SQLite file (aiosqlite) per test and never
touch SMTP: transports here are in-memory fakes driven by a fake clock.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import List, Optional

# Must be set before app.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./unused.db")
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.setdefault("SENTRY_DSN", "")

import pytest

from app.db.base import Base
from app.db.session import build_engine, build_session_factory, init_db
from app.models import Application, Project, ProjectStatus, User, UserRole
from app.services.application_intake import ApplicationIntake
from app.services.mail_transport import SendResult


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class ScriptedTransport:
    """
    Transport whose outcome per call is scripted.

    `failures` is the number of leading calls that fail (None = always fail).
    Every call is recorded with the clock time it happened at.
    """

    def __init__(self, clock=None, failures: Optional[int] = 0, fail_for: Optional[set] = None):
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.failures = failures
        self.fail_for = fail_for
        self.calls: List[dict] = []
        self.delivered: List[str] = []

    async def send(self, recipient: str, subject: str, body: str) -> SendResult:
        self.calls.append({"recipient": recipient, "subject": subject, "at": self.clock()})
        attempt = sum(1 for call in self.calls if call["recipient"] == recipient)

        if self.fail_for is not None:
            should_fail = recipient in self.fail_for and attempt == 1
        else:
            should_fail = self.failures is None or attempt <= self.failures

        if should_fail:
            return SendResult.failure("550 mailbox unavailable")
        self.delivered.append(recipient)
        return SendResult.success(message_id=f"msg-{len(self.calls)}")


class RecordingDispatcher:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'marketplace_test.db'}")
    await init_db(engine)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def intake(session_factory, dispatcher):
    return ApplicationIntake(session_factory, dispatcher)


@pytest.fixture
def make_user(session_factory):
    counter = {"n": 0}

    async def _make_user(role: UserRole = UserRole.STUDENT, full_name: Optional[str] = None) -> User:
        counter["n"] += 1
        user = User(
            email=f"{role.value.lower()}{counter['n']}@example.com",
            full_name=full_name or f"{role.value.title()} {counter['n']}",
            role=role.value,
        )
        async with session_factory() as session:
            session.add(user)
            await session.commit()
        return user

    return _make_user


@pytest.fixture
def make_project(session_factory):
    async def _make_project(
        owner: User,
        status: ProjectStatus = ProjectStatus.PUBLISHED,
        max_applicants: Optional[int] = None,
        title: str = "Build a scheduling API",
    ) -> Project:
        project = Project(
            created_by_id=owner.id,
            title=title,
            description="Backend internship",
            status=status.value,
            max_applicants=max_applicants,
            current_applicants=0,
        )
        async with session_factory() as session:
            session.add(project)
            await session.commit()
        return project

    return _make_project


@pytest.fixture
def load_project(session_factory):
    async def _load(project_id) -> Project:
        async with session_factory() as session:
            return await session.get(Project, project_id)

    return _load


@pytest.fixture
def count_applications(session_factory):
    from sqlalchemy import func, select

    async def _count(project_id) -> int:
        async with session_factory() as session:
            return await session.scalar(
                select(func.count(Application.id)).where(Application.project_id == project_id)
            )

    return _count


COVER_LETTER = (
    "I have built two FastAPI services and would love to work on this project with your team."
)
