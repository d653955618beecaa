"""Tests for the split test lifecycle."""
import itertools
import pytest
from sqlalchemy.orm import Session

from splitlab.errors import InvalidTransition, ValidationError
from splitlab.models import SplitTest, ExperimentStatus, StopReason
from splitlab.services import lifecycle
from splitlab.services.lifecycle import LifecycleService, TRANSITIONS

S = ExperimentStatus

LEGAL = {
    (S.DRAFT, S.ACTIVE),
    (S.ACTIVE, S.PAUSED),
    (S.PAUSED, S.ACTIVE),
    (S.ACTIVE, S.COMPLETED),
    (S.ACTIVE, S.STOPPED_ETHICS),
    (S.PAUSED, S.STOPPED_ETHICS),
    (S.ACTIVE, S.STOPPED_MANUAL),
    (S.PAUSED, S.STOPPED_MANUAL),
    (S.COMPLETED, S.CONCLUDED),
    (S.STOPPED_ETHICS, S.CONCLUDED),
    (S.STOPPED_MANUAL, S.CONCLUDED),
}


def ready_split_test(status: ExperimentStatus) -> SplitTest:
    return SplitTest(
        module_id="mod_1",
        status=status,
        control={"name": "A", "content_snapshot": "a"},
        variant={"name": "B", "content_snapshot": "b"},
        target_sample_size=10,
    )


def test_transition_table_matches_lifecycle():
    """Test that exactly the documented moves are allowed."""
    allowed = {(src, dst) for src, targets in TRANSITIONS.items() for dst in targets}
    assert allowed == LEGAL


@pytest.mark.parametrize("current,target", list(itertools.product(S, S)))
def test_every_status_pair(current, target):
    """Test that legal moves succeed and every other move raises InvalidTransition."""
    split_test = ready_split_test(current)

    if (current, target) in LEGAL:
        lifecycle.transition(split_test, target)
        assert split_test.status == target
    else:
        with pytest.raises(InvalidTransition):
            lifecycle.transition(split_test, target)
        assert split_test.status == current


def test_start_requires_both_versions():
    """Test that a draft without variant content cannot start."""
    split_test = ready_split_test(S.DRAFT)
    split_test.variant = {"name": "B", "content_snapshot": ""}

    with pytest.raises(ValidationError):
        lifecycle.transition(split_test, S.ACTIVE)
    assert split_test.status == S.DRAFT


def test_start_requires_positive_target():
    split_test = ready_split_test(S.DRAFT)
    split_test.target_sample_size = 0

    with pytest.raises(ValidationError):
        lifecycle.transition(split_test, S.ACTIVE)


def test_audit_timestamps(db: Session, make_split_test):
    """Test that each lifecycle step stamps its timestamp."""
    split_test = make_split_test(start=False)
    service = LifecycleService(db)

    service.start(split_test.id)
    db.refresh(split_test)
    assert split_test.started_at is not None
    first_run = split_test.run_started_at

    service.pause(split_test.id)
    db.refresh(split_test)
    assert split_test.paused_at is not None

    service.resume(split_test.id)
    db.refresh(split_test)
    assert split_test.paused_at is None
    assert split_test.run_started_at > first_run

    service.stop(split_test.id, "Wrong module attached")
    db.refresh(split_test)
    assert split_test.status == S.STOPPED_MANUAL
    assert split_test.stopped_at is not None
    assert split_test.stopped_reason == StopReason.MANUAL_STOP
    assert split_test.stop_details == {"reason": "Wrong module attached"}


def test_stop_requires_reason(db: Session, make_split_test):
    """Test that a manual stop without a reason is rejected."""
    split_test = make_split_test()

    with pytest.raises(ValidationError):
        LifecycleService(db).stop(split_test.id, "   ")

    db.refresh(split_test)
    assert split_test.status == S.ACTIVE


def test_start_only_from_draft(db: Session, make_split_test):
    """Test that start cannot be used to resume a paused split test."""
    split_test = make_split_test()
    service = LifecycleService(db)
    service.pause(split_test.id)

    with pytest.raises(InvalidTransition):
        service.start(split_test.id)


def test_resume_only_from_paused(db: Session, make_split_test):
    split_test = make_split_test(start=False)

    with pytest.raises(InvalidTransition):
        LifecycleService(db).resume(split_test.id)


def test_stopped_split_test_cannot_restart(db: Session, make_split_test):
    """Test that a stopped split test stays stopped."""
    split_test = make_split_test()
    service = LifecycleService(db)
    service.stop(split_test.id, "Superseded")

    with pytest.raises(InvalidTransition):
        service.resume(split_test.id)
    with pytest.raises(InvalidTransition):
        service.pause(split_test.id)
