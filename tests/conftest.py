import sys
from pathlib import Path

import pytest
from sqlmodel import Session, SQLModel, create_engine, text


def _ensure_app_on_path():
    repo_root = Path(__file__).resolve().parent.parent
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))
    return repo_root


_ensure_app_on_path()

# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================

import asyncio
from datetime import datetime, timedelta

import httpx
from sqlalchemy.pool import StaticPool

from cbt_portal.security import hash_password
from cbt_portal.models import Exam, ExamStatus, Question, QuestionType, Role, User

# Use sqlite:///:memory: with poolclass=StaticPool to share the same in-memory DB across threads
test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,  # CRITICAL: Ensures all connections share the same in-memory database
)

PASSWORD = "testpass123"


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create all tables in the test database once per session."""
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(autouse=True)
def cleanup_db_between_tests():
    """Clean up test data after each test."""
    yield  # run the test

    # Clean up in FK-safe order
    with Session(test_engine) as session:
        session.exec(text("DELETE FROM answer"))
        session.exec(text("DELETE FROM submission"))
        session.exec(text("DELETE FROM question"))
        session.exec(text("DELETE FROM exam"))
        session.exec(text("DELETE FROM user"))
        session.commit()


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================

from cbt_portal.database import get_session
from cbt_portal.main import app


class SyncClientWrapper:
    """Blocking facade over httpx.AsyncClient so tests stay synchronous."""

    def __init__(self, async_client, loop):
        self.async_client = async_client
        self.loop = loop

    def request(self, method, url, **kwargs):
        return self.loop.run_until_complete(self.async_client.request(method, url, **kwargs))

    def get(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.get(*args, **kwargs))

    def post(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.post(*args, **kwargs))

    def delete(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.delete(*args, **kwargs))

    def login(self, username, password=PASSWORD):
        response = self.post("/auth/login", json={"username": username, "password": password})
        assert response.status_code == 200, response.text
        return response


@pytest.fixture
def client():
    """Create test client using httpx AsyncClient with sync wrapper."""

    def override_get_session():
        # CRITICAL: Must use same test_engine instance that has tables
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    loop = asyncio.new_event_loop()
    transport = httpx.ASGITransport(app=app)
    async_client = httpx.AsyncClient(transport=transport, base_url="http://testserver")

    yield SyncClientWrapper(async_client, loop)

    # Cleanup
    loop.run_until_complete(async_client.aclose())
    loop.close()
    app.dependency_overrides.clear()


@pytest.fixture
def session():
    """Provide a database session for tests."""
    with Session(test_engine) as session:
        yield session


# ============================================================================
# ENTITY FIXTURES
# ============================================================================


def _create_user(**fields) -> User:
    with Session(test_engine) as session:
        user = User(password_hash=hash_password(PASSWORD), **fields)
        session.add(user)
        session.commit()
        session.refresh(user)
        user_id = user.id

    with Session(test_engine) as session:
        return session.get(User, user_id)


@pytest.fixture
def admin_user():
    return _create_user(name="Admin User", email="admin@example.com", role=Role.ADMIN)


@pytest.fixture
def staff_user():
    """Staff member allowed to author exams and grade."""
    return _create_user(
        name="Grace Teacher",
        email="grace@example.com",
        role=Role.STAFF,
        permissions={"can_create_exam": True, "can_grade": True, "can_manage_students": False},
    )


@pytest.fixture
def restricted_staff_user():
    """Staff member without any permission flags."""
    return _create_user(name="Sam Staff", email="sam@example.com", role=Role.STAFF, permissions={})


@pytest.fixture
def student_manager():
    """Staff member who may manage student accounts but nothing else."""
    return _create_user(
        name="Mary Registrar",
        email="mary@example.com",
        role=Role.STAFF,
        permissions={"can_manage_students": True},
    )


@pytest.fixture
def student_user():
    return _create_user(name="Alice Student", admission_number="ADM001", role=Role.STUDENT, class_level="JSS1")


@pytest.fixture
def other_student():
    return _create_user(name="Bob Student", admission_number="ADM002", role=Role.STUDENT, class_level="JSS2")


def _create_exam(created_by_id, questions, passing_marks, **fields) -> Exam:
    with Session(test_engine) as session:
        exam = Exam(
            title=fields.pop("title", "Test Exam"),
            duration=30,
            total_marks=sum(q["marks"] for q in questions),
            passing_marks=passing_marks,
            status=fields.pop("status", ExamStatus.PUBLISHED),
            created_by_id=created_by_id,
            **fields,
        )
        session.add(exam)
        session.commit()
        session.refresh(exam)
        exam_id = exam.id

        for index, q in enumerate(questions, start=1):
            session.add(Question(exam_id=exam_id, order=index, **q))
        session.commit()

    with Session(test_engine) as session:
        return session.get(Exam, exam_id)


def mc_question(text_, correct, marks, options=("Red", "Green", "Blue", "Yellow")):
    return {
        "type": QuestionType.MULTIPLE_CHOICE,
        "question": text_,
        "options": list(options),
        "correct_answer": correct,
        "marks": marks,
    }


@pytest.fixture
def mcq_exam(staff_user):
    """Published exam with three multiple choice questions worth 1, 2 and 3 marks (pass at 4)."""
    return _create_exam(
        staff_user.id,
        [
            mc_question("Colour of grass?", "Green", 1),
            mc_question("Colour of the sky?", "Blue", 2),
            mc_question("Colour of blood?", "Red", 3),
        ],
        passing_marks=4,
        title="Colours Quiz",
    )


@pytest.fixture
def essay_exam(staff_user):
    """Published exam with one multiple choice and one essay question, 5 marks each."""
    return _create_exam(
        staff_user.id,
        [
            mc_question("Colour of grass?", "Green", 5),
            {
                "type": QuestionType.ESSAY,
                "question": "Describe photosynthesis.",
                "options": None,
                "correct_answer": "Plants turn light into chemical energy.",
                "marks": 5,
            },
        ],
        passing_marks=5,
        title="Biology Test",
    )


@pytest.fixture
def scheduled_exam(staff_user):
    """Exam for JSS1 only that opens in an hour."""
    return _create_exam(
        staff_user.id,
        [mc_question("Colour of grass?", "Green", 2)],
        passing_marks=1,
        title="Later Exam",
        assigned_to=["JSS1"],
        start_time=datetime.utcnow() + timedelta(hours=1),
    )


@pytest.fixture
def make_exam(staff_user):
    """Factory for exams with custom questions."""

    def factory(questions, passing_marks, **fields):
        return _create_exam(staff_user.id, questions, passing_marks, **fields)

    return factory
