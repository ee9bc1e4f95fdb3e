"""
Shared fixtures: in-memory database, seeded schools and users, and the fake
platform clients.
"""
import os

from cryptography.fernet import Fernet

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")

from datetime import datetime, timezone
from typing import Callable

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from backend.core.encryption import reset_encryption
from backend.db import models  # noqa: F401
from backend.db.database import Base
from backend.db.models import (
    Blog,
    BlogStatus,
    Platform,
    School,
    Submission,
    SubmissionStatus,
    User,
    UserRole,
)
from backend.services.ledger_service import LedgerService
from backend.tests.fixtures.fakes import FakePlatformClient


SUBMISSION_STATUS_FOR_BLOG = {
    BlogStatus.DRAFT_CREATED: SubmissionStatus.DRAFT_CREATED,
    BlogStatus.REVIEW: SubmissionStatus.REVIEW,
    BlogStatus.DRAFT_WRITER: SubmissionStatus.REVIEW,
    BlogStatus.APPROVED_SCHOOL: SubmissionStatus.REVIEW,
    BlogStatus.PUBLISHED_WP: SubmissionStatus.PUBLISHED_WP,
}


@pytest.fixture(autouse=True)
def _fresh_encryption():
    reset_encryption()
    yield
    reset_encryption()


@pytest.fixture
def test_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=test_engine)


@pytest.fixture
def test_db(session_factory) -> Session:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def _add(db: Session, obj):
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj


@pytest.fixture
def school_a(test_db: Session) -> School:
    return _add(test_db, School(name="Springfield High", city="Pune", contact_email="office@springfield.example"))


@pytest.fixture
def school_b(test_db: Session) -> School:
    return _add(test_db, School(name="Shelbyville Academy", city="Nashik"))


@pytest.fixture
def admin_user(test_db: Session) -> User:
    return _add(test_db, User(email="admin@schoolchamps.example", name="Admin", role=UserRole.ADMIN.value))


@pytest.fixture
def writer_user(test_db: Session) -> User:
    return _add(test_db, User(email="writer@schoolchamps.example", name="Writer", role=UserRole.WRITER.value))


@pytest.fixture
def marketer_user(test_db: Session) -> User:
    return _add(test_db, User(email="marketer@schoolchamps.example", name="Marketer", role=UserRole.MARKETER.value))


@pytest.fixture
def school_user(test_db: Session, school_a: School) -> User:
    return _add(test_db, User(email="principal@springfield.example", role=UserRole.SCHOOL.value, school_id=school_a.id))


@pytest.fixture
def other_school_user(test_db: Session, school_b: School) -> User:
    return _add(test_db, User(email="principal@shelbyville.example", role=UserRole.SCHOOL.value, school_id=school_b.id))


@pytest.fixture
def fund(test_db: Session) -> Callable[[School, int], int]:
    """Give a school coins through a purchase transaction"""

    def _fund(school: School, coins: int) -> int:
        ledger = LedgerService(test_db)
        ledger.purchase(school.id, coins, "test top-up")
        return ledger.get_balance(school.id)

    return _fund


@pytest.fixture
def make_blog(test_db: Session, writer_user: User) -> Callable[..., Blog]:
    """Create a submission and its blog directly in the given blog state"""
    counter = {"n": 0}

    def _make(school: School, status: BlogStatus = BlogStatus.APPROVED_SCHOOL, **overrides) -> Blog:
        counter["n"] += 1
        n = counter["n"]
        submission = _add(test_db, Submission(
            school_id=school.id,
            title=f"Science fair {n}",
            description="Students built a solar car",
            category="achievement",
            attachments=[],
            status=SUBMISSION_STATUS_FOR_BLOG[status].value,
            created_by=writer_user.id,
            version=0,
        ))
        values = dict(
            submission_id=submission.id,
            title=f"Science fair {n}",
            content="<p>Our students built a solar car.</p>",
            slug=f"science-fair-{n}",
            meta_title=f"Science fair {n}",
            meta_description="Solar car success",
            seo_keywords=["science", "solar"],
            tags=["science"],
            category="achievement",
            featured_image="https://cdn.schoolchamps.example/solar.jpg",
            reading_time=1,
            status=status.value,
            assigned_school_id=school.id,
            created_by=writer_user.id,
            version=0,
        )
        if status == BlogStatus.PUBLISHED_WP:
            values["wordpress_post_id"] = 9000 + n
            values["wordpress_url"] = f"https://schoolchamps.example/science-fair-{n}/"
            values["published_at"] = datetime.now(timezone.utc)
        values.update(overrides)
        return _add(test_db, Blog(**values))

    return _make


@pytest.fixture
def platform_clients():
    return {
        Platform.FACEBOOK: FakePlatformClient(Platform.FACEBOOK),
        Platform.INSTAGRAM: FakePlatformClient(Platform.INSTAGRAM),
        Platform.LINKEDIN: FakePlatformClient(Platform.LINKEDIN),
    }
