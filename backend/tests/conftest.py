"""Shared fixtures: an isolated SQLite database per test and split test builders."""
import pytest
from sqlalchemy.orm import sessionmaker, Session

from splitlab.database import Base, build_engine
from splitlab.models import Participant, ContentVersion
from splitlab.models.types import utcnow
from splitlab.schemas.split_test import CreateSplitTestRequest
from splitlab.services.lifecycle import LifecycleService
from splitlab.services.split_tests import SplitTestService

ADMIN_KEY = "test-admin-key"
PLATFORM_KEY = "test-platform-key"


class FixedRng:
    """Stands in for random.Random; always draws the same number."""

    def __init__(self, value: float):
        self.value = value

    def random(self) -> float:
        return self.value


# 0.0 is below every control probability, 0.99 above
CONTROL_RNG = FixedRng(0.0)
VARIANT_RNG = FixedRng(0.99)


def build_request(**overrides) -> CreateSplitTestRequest:
    data = {
        "module_id": "mod_intro_budgeting",
        "module_title": "Introduction to Budgeting",
        "course_id": "course_financial_literacy",
        "course_title": "Financial Literacy",
        "control": {"name": "Current scaffolding", "content_snapshot": "Explain the rule, then practise."},
        "variant": {"name": "Worked example first", "content_snapshot": "Show a worked budget, then practise."},
        "target_sample_size": 100,
    }
    data.update(overrides)
    return CreateSplitTestRequest(**data)


@pytest.fixture
def engine(tmp_path):
    """File-backed so that several sessions can interleave like separate requests."""
    engine = build_engine(f"sqlite:///{tmp_path / 'splitlab_test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    """Create test database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_split_test(db: Session):
    """Create a split test, started unless start=False."""
    def factory(start: bool = True, **overrides):
        split_test = SplitTestService(db).create_split_test(build_request(**overrides), created_by="tests")
        if start:
            split_test = LifecycleService(db).start(split_test.id)
        return split_test
    return factory


@pytest.fixture
def add_participants(db: Session):
    """Insert finished participants directly, bypassing allocation."""
    def factory(split_test, version: ContentVersion, count: int, achieved: int, sentiment=None):
        now = utcnow()
        for i in range(count):
            seq = split_test.total_sample + 1
            if version == ContentVersion.CONTROL:
                split_test.current_sample_a += 1
            else:
                split_test.current_sample_b += 1
            split_test.participants.append(Participant(
                enrolment_id=f"{version.value}-{seq}",
                version=version,
                allocation_seq=seq,
                assigned_at=now,
                started_at=now,
                competency_achieved=i < achieved,
                messages_to_competency=12 if i < achieved else None,
                got_stuck=False,
                completed_module=True,
                abandoned=False,
                feedback_sentiment=sentiment,
                completed_at=now,
            ))
        db.commit()
        return split_test
    return factory
