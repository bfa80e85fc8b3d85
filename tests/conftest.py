from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from coursehub.core.config import Settings
from coursehub.core.security import hash_password
from coursehub.db.init_db import init_db
from coursehub.db.session import make_engine, make_session_factory
from coursehub.main import create_app
from coursehub.models.assignment import Assignment
from coursehub.models.course import Course
from coursehub.models.enrollment import Enrollment
from coursehub.models.quiz import Quiz, QuizOption, QuizQuestion
from coursehub.models.user import User

PASSWORD = "password123"

# "now" for every test unless a test moves the clock
T0 = datetime(2024, 1, 5, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'test_coursehub.db'}",
        secret_key="test-secret",
        bcrypt_rounds=4,
    )


@pytest.fixture()
def clock():
    return FrozenClock(T0)


@pytest.fixture()
def session_factory(settings):
    engine = make_engine(settings.database_url)
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def users(session_factory) -> dict[str, int]:
    """Seed one user per role plus a second faculty and a second student."""
    seed = {
        "admin": ("admin@example.com", "Admin", "admin"),
        "faculty": ("faculty1@example.com", "Faculty One", "faculty"),
        "faculty2": ("faculty2@example.com", "Faculty Two", "faculty"),
        "student1": ("student1@example.com", "Student One", "student"),
        "student2": ("student2@example.com", "Student Two", "student"),
    }
    hashed = hash_password(PASSWORD, rounds=4)

    session = session_factory()
    try:
        rows = {
            key: User(email=email, full_name=name, role=role, hashed_password=hashed)
            for key, (email, name, role) in seed.items()
        }
        session.add_all(rows.values())
        session.commit()
        return {key: user.id for key, user in rows.items()}
    finally:
        session.close()


@pytest.fixture()
def course(session_factory, users) -> int:
    """CS5004, taught by faculty, with both students enrolled."""
    session = session_factory()
    try:
        c = Course(title="CS5004", instructor_id=users["faculty"])
        session.add(c)
        session.commit()
        session.add_all(
            [
                Enrollment(course_id=c.id, student_id=users["student1"]),
                Enrollment(course_id=c.id, student_id=users["student2"]),
            ]
        )
        session.commit()
        return c.id
    finally:
        session.close()


@pytest.fixture()
def make_assignment(session_factory, course, users):
    def _make(due_at=T0 + timedelta(days=5), published=True, total_marks=100):
        session = session_factory()
        try:
            a = Assignment(
                course_id=course,
                title="HW1",
                description="Write a parser",
                due_at=due_at,
                total_marks=total_marks,
                is_published=published,
                created_by=users["faculty"],
            )
            session.add(a)
            session.commit()
            return a.id
        finally:
            session.close()

    return _make


@pytest.fixture()
def make_quiz(session_factory, course, users):
    """Quiz with two 5-mark questions; option 0 is correct for both."""

    def _make(due_at=T0 + timedelta(days=5), published=True, time_limit_minutes=30):
        session = session_factory()
        try:
            quiz = Quiz(
                course_id=course,
                title="Quiz 1",
                description="Warm-up",
                time_limit_minutes=time_limit_minutes,
                due_at=due_at,
                is_published=published,
                created_by=users["faculty"],
                questions=[
                    QuizQuestion(
                        position=i,
                        text=f"Question {i + 1}",
                        marks=5,
                        options=[
                            QuizOption(position=0, text="right", is_correct=True),
                            QuizOption(position=1, text="wrong", is_correct=False),
                        ],
                    )
                    for i in range(2)
                ],
            )
            session.add(quiz)
            session.commit()
            return quiz.id
        finally:
            session.close()

    return _make


@pytest.fixture()
def app(settings, clock, users):
    return create_app(settings, clock=clock)


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


def login(client, email: str, password: str = PASSWORD) -> str:
    r = client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return r.json()["access_token"]


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
