"""Loading split tests and committing changes to them atomically."""
import uuid
import structlog
from typing import Callable, List, Optional, TypeVar
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from splitlab.config import get_settings
from splitlab.errors import ConcurrencyExhausted, ExperimentNotFound
from splitlab.models.split_test import SplitTest, ExperimentStatus
from splitlab.models.participant import Participant
from splitlab.schemas.split_test import StopConditions

logger = structlog.get_logger()

T = TypeVar("T")


def resolve_stop_conditions(split_test: SplitTest) -> StopConditions:
    """Stop conditions stored on the split test, with defaults for anything missing."""
    return StopConditions.model_validate(split_test.stop_conditions or {})


class SplitTestStore:
    """Request-scoped access to split test aggregates."""

    def __init__(self, db: Session):
        self.db = db

    def find(self, split_test_id) -> Optional[SplitTest]:
        """Get a split test by ID, or None if it does not exist."""
        try:
            key = split_test_id if isinstance(split_test_id, uuid.UUID) else uuid.UUID(str(split_test_id))
        except ValueError:
            return None
        return self.db.get(SplitTest, key)

    def get(self, split_test_id) -> SplitTest:
        """Get a split test by ID.

        Raises:
            ExperimentNotFound: If no split test has this ID
        """
        split_test = self.find(split_test_id)
        if split_test is None:
            raise ExperimentNotFound(split_test_id)
        return split_test

    def get_participant(self, split_test: SplitTest, enrolment_id: str) -> Optional[Participant]:
        return self.db.query(Participant).filter(
            Participant.split_test_id == split_test.id,
            Participant.enrolment_id == enrolment_id
        ).first()

    def get_active_for_module(self, module_id: str) -> Optional[SplitTest]:
        """Get the active split test for a module, if there is one."""
        return self.db.query(SplitTest).filter(
            SplitTest.module_id == module_id,
            SplitTest.status == ExperimentStatus.ACTIVE
        ).order_by(SplitTest.created_at.asc()).first()

    def list(
        self,
        status: Optional[ExperimentStatus] = None,
        module_id: Optional[str] = None,
        limit: int = 50
    ) -> List[SplitTest]:
        """List split tests, newest first, optionally filtered."""
        query = self.db.query(SplitTest)
        if status is not None:
            query = query.filter(SplitTest.status == status)
        if module_id is not None:
            query = query.filter(SplitTest.module_id == module_id)
        return query.order_by(SplitTest.created_at.desc()).limit(limit).all()

    def run_atomically(self, operation: Callable[[], T], retries: Optional[int] = None) -> T:
        """
        Run a load-validate-mutate operation and commit it as one unit.

        The split test row carries a version counter, so the commit only
        succeeds if nobody else changed the row since this attempt loaded it.
        On a conflict the session is rolled back (expiring everything it
        loaded) and the operation runs again against fresh state, so every
        check inside it is repeated. A racing duplicate participant insert
        surfaces as an IntegrityError and is retried the same way.

        Args:
            operation: Callable that loads, checks and mutates through self.db
            retries: Maximum attempts (defaults to settings.max_concurrency_retries)

        Returns:
            Whatever the operation returned on the successful attempt

        Raises:
            ConcurrencyExhausted: If every attempt conflicted
        """
        attempts = retries or get_settings().max_concurrency_retries

        for attempt in range(1, attempts + 1):
            try:
                result = operation()
                self.db.commit()
                return result
            except (StaleDataError, IntegrityError) as e:
                self.db.rollback()
                logger.warning(
                    "concurrency_conflict",
                    attempt=attempt,
                    max_attempts=attempts,
                    error_type=type(e).__name__
                )
            except Exception:
                self.db.rollback()
                raise

        raise ConcurrencyExhausted(attempts)
