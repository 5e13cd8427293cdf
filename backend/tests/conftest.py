"""Pytest configuration for backend tests."""
import sys
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Tests never touch a real database or start the cron jobs
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ.pop("RESEND_API_KEY", None)

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Import database components
from affinity.database import Base

# Import the entire models module to ensure all models are registered with Base.metadata
import affinity.models  # noqa: F401
from affinity.models import (
    AccountType,
    Connection,
    ContentItem,
    ContentType,
    TagSource,
    TaxonomyTerm,
    User,
    UserBlock,
    UserSettings,
    UserTaxonomy,
)
from affinity.services.mailer import Mailer


@pytest.fixture(scope="session")
def engine():
    """
    In-memory SQLite engine shared by every test.

    StaticPool keeps a single connection so the schema survives across sessions
    and worker threads.
    """
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    if not Base.metadata.tables:
        raise RuntimeError(
            "No tables registered in Base.metadata. "
            "Did you import affinity.models? All model classes must be imported before create_all()."
        )

    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture(scope="function")
def connection(engine):
    """A connection holding an outer transaction that is rolled back after the test."""
    conn = engine.connect()
    transaction = conn.begin()
    yield conn
    transaction.rollback()
    conn.close()


@pytest.fixture(scope="function")
def session_factory(connection):
    """Session factory bound to the test connection; every session sees the test's rows."""
    return sessionmaker(bind=connection, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db(session_factory) -> Session:
    """
    Create a database session for each test.

    Uses a transaction that is rolled back after each test for isolation.
    """
    session = session_factory()
    yield session
    session.close()


# ---------------------------------------------------------------------------
# Data builders
# ---------------------------------------------------------------------------

@pytest.fixture
def make_term(db: Session):
    def _make(axis: str, name: str) -> TaxonomyTerm:
        term = TaxonomyTerm(axis=getattr(axis, "value", axis), name=name)
        db.add(term)
        db.flush()
        return term
    return _make


@pytest.fixture
def make_user(db: Session):
    counter = {"n": 0}

    def _make(
        name: str = "User",
        email: Optional[str] = "",
        country: Optional[str] = None,
        city: Optional[str] = None,
        is_verified: bool = True,
        account_type: str = AccountType.INDIVIDUAL.value,
        attributes: List[TaxonomyTerm] = (),
        interests: List[TaxonomyTerm] = (),
        email_frequency: Optional[str] = None,
        notifications: Any = None,
        bidirectional_match: Optional[bool] = None,
        match_formula: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> User:
        counter["n"] += 1
        if email == "":
            email = f"user{counter['n']}@example.com"
        user = User(
            name=name,
            email=email,
            country=country,
            city=city,
            is_verified=is_verified,
            account_type=account_type,
            created_at=created_at or datetime.utcnow(),
        )
        db.add(user)
        db.flush()
        for term in attributes:
            db.add(UserTaxonomy(user_id=user.id, term_id=term.id, source=TagSource.ATTRIBUTE.value))
        for term in interests:
            db.add(UserTaxonomy(user_id=user.id, term_id=term.id, source=TagSource.INTEREST.value))
        if any(v is not None for v in (email_frequency, notifications, bidirectional_match, match_formula)):
            row = UserSettings(
                user_id=user.id,
                email_frequency=email_frequency or "daily",
                notifications=notifications,
            )
            if bidirectional_match is not None:
                row.bidirectional_match = bidirectional_match
            if match_formula is not None:
                row.bidirectional_match_formula = match_formula
            db.add(row)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def make_content(db: Session):
    def _make(
        owner: User,
        content_type: str = ContentType.JOB.value,
        title: str = "Content",
        terms: List[TaxonomyTerm] = (),
        created_at: Optional[datetime] = None,
        **fields,
    ) -> ContentItem:
        item = ContentItem(
            owner_user_id=owner.id,
            content_type=getattr(content_type, "value", content_type),
            title=title,
            created_at=created_at or datetime.utcnow(),
            **fields,
        )
        item.terms = list(terms)
        db.add(item)
        db.commit()
        db.refresh(item)
        return item
    return _make


@pytest.fixture
def connect(db: Session):
    def _connect(a: User, b: User) -> Connection:
        conn = Connection(user_one_id=a.id, user_two_id=b.id)
        db.add(conn)
        db.commit()
        return conn
    return _connect


@pytest.fixture
def block(db: Session):
    def _block(blocker: User, blocked: User) -> UserBlock:
        row = UserBlock(blocker_id=blocker.id, blocked_id=blocked.id)
        db.add(row)
        db.commit()
        return row
    return _block


class RecordingMailer(Mailer):
    """Mailer double that records every call instead of sending."""

    def __init__(self, fail_categories=(), raise_categories=()):
        self.calls: List[Dict[str, Any]] = []
        self.fail_categories = set(fail_categories)
        self.raise_categories = set(raise_categories)

    def send(self, recipient, category, items, template_name, cadence) -> bool:
        if category in self.raise_categories:
            raise ConnectionError(f"transport down for {category}")
        self.calls.append(
            {
                "user_id": recipient.user_id,
                "category": category,
                "items": items,
                "template_name": template_name,
                "cadence": cadence,
            }
        )
        return category not in self.fail_categories

    def categories_for(self, user_id: str) -> List[str]:
        return [c["category"] for c in self.calls if c["user_id"] == user_id]


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()
