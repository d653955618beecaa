"""Split test lifecycle state machine."""
import structlog
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Session

from splitlab.errors import InvalidTransition, ValidationError
from splitlab.models.split_test import SplitTest, ExperimentStatus, StopReason
from splitlab.models.types import utcnow
from splitlab.services.store import SplitTestStore

logger = structlog.get_logger()

S = ExperimentStatus

# The only legal moves; anything else is an InvalidTransition
TRANSITIONS = {
    S.DRAFT: frozenset({S.ACTIVE}),
    S.ACTIVE: frozenset({S.PAUSED, S.COMPLETED, S.STOPPED_ETHICS, S.STOPPED_MANUAL}),
    S.PAUSED: frozenset({S.ACTIVE, S.STOPPED_ETHICS, S.STOPPED_MANUAL}),
    S.COMPLETED: frozenset({S.CONCLUDED}),
    S.STOPPED_ETHICS: frozenset({S.CONCLUDED}),
    S.STOPPED_MANUAL: frozenset({S.CONCLUDED}),
    S.CONCLUDED: frozenset(),
}

CONCLUDABLE_STATUSES = frozenset({S.COMPLETED, S.STOPPED_ETHICS, S.STOPPED_MANUAL})


def can_transition(current: ExperimentStatus, target: ExperimentStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(split_test: SplitTest, target: ExperimentStatus) -> None:
    if not can_transition(split_test.status, target):
        raise InvalidTransition(split_test.status, target)


def validate_startable(split_test: SplitTest) -> None:
    """A split test needs both versions and a positive target before it can run."""
    for label, payload in (("control", split_test.control), ("variant", split_test.variant)):
        if not payload or not payload.get("name") or not payload.get("content_snapshot"):
            raise ValidationError(f"The {label} version must have a name and content before starting")
    if not split_test.target_sample_size or split_test.target_sample_size <= 0:
        raise ValidationError("target_sample_size must be greater than zero")


def transition(
    split_test: SplitTest,
    target: ExperimentStatus,
    now: Optional[datetime] = None,
    reason: Optional[StopReason] = None,
    details: Optional[dict] = None
) -> None:
    """
    Move a split test to a new status and stamp the audit fields.

    Only mutates the aggregate; the caller commits (normally through
    SplitTestStore.run_atomically) so the change lands with whatever else
    the operation did.

    Raises:
        InvalidTransition: If the move is not in TRANSITIONS
        ValidationError: If starting a split test that is not fully configured
    """
    ensure_transition(split_test, target)
    now = now or utcnow()
    previous = split_test.status

    if target == S.ACTIVE:
        if previous == S.DRAFT:
            validate_startable(split_test)
            split_test.started_at = now
        else:
            split_test.paused_at = None
        # The dissatisfaction window only looks at the current run
        split_test.run_started_at = now
    elif target == S.PAUSED:
        split_test.paused_at = now
        # Completions while paused form a window of their own
        split_test.run_started_at = now
    elif target == S.COMPLETED:
        split_test.completed_at = now
        split_test.stopped_reason = reason or StopReason.SAMPLE_REACHED
    elif target in (S.STOPPED_ETHICS, S.STOPPED_MANUAL):
        split_test.stopped_at = now
        split_test.stopped_reason = reason
        split_test.stop_details = details
    elif target == S.CONCLUDED:
        split_test.concluded_at = now

    split_test.status = target

    logger.info(
        "experiment_transition",
        split_test_id=str(split_test.id),
        from_status=previous.value,
        to_status=target.value,
        reason=reason.value if reason else None
    )


def force_ethics_stop(split_test: SplitTest, reason: StopReason, details: dict, now: Optional[datetime] = None) -> None:
    """active|paused -> stopped_ethics. Only the ethical monitor calls this."""
    transition(split_test, S.STOPPED_ETHICS, now=now, reason=reason, details=details)


class LifecycleService:
    """Explicit lifecycle controls exposed to administrators."""

    def __init__(self, db: Session):
        self.db = db
        self.store = SplitTestStore(db)

    def _apply(self, split_test_id, target: ExperimentStatus, sources=None, **kwargs) -> SplitTest:
        def operation():
            split_test = self.store.get(split_test_id)
            if sources is not None and split_test.status not in sources:
                raise InvalidTransition(split_test.status, target)
            transition(split_test, target, **kwargs)
            return split_test

        return self.store.run_atomically(operation)

    def start(self, split_test_id) -> SplitTest:
        """draft -> active. Learners are allocated from now on."""
        return self._apply(split_test_id, S.ACTIVE, sources={S.DRAFT})

    def pause(self, split_test_id) -> SplitTest:
        """active -> paused. No new allocations; outcomes are still recorded in a fresh window."""
        return self._apply(split_test_id, S.PAUSED)

    def resume(self, split_test_id) -> SplitTest:
        """paused -> active. Starts a fresh dissatisfaction window."""
        return self._apply(split_test_id, S.ACTIVE, sources={S.PAUSED})

    def stop(self, split_test_id, reason: str) -> SplitTest:
        """active|paused -> stopped_manual. A human-readable reason is required."""
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to stop a split test")
        return self._apply(
            split_test_id,
            S.STOPPED_MANUAL,
            reason=StopReason.MANUAL_STOP,
            details={"reason": reason.strip()}
        )
