"""Tests for optimistic concurrency between interleaved requests."""
import pytest
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from splitlab.errors import ConcurrencyExhausted, ExperimentNotActive
from splitlab.models import EthicalCondition, ExperimentStatus, Participant, Sentiment
from splitlab.schemas.outcome import OutcomeDelta
from splitlab.services import ethics
from splitlab.services.allocation import AllocationService
from splitlab.services.analysis import AnalysisService
from splitlab.services.outcomes import OutcomeService
from splitlab.services.store import SplitTestStore

from conftest import CONTROL_RNG


class InterleavingRng:
    """Runs another request the first time a version is drawn, then behaves like CONTROL_RNG."""

    def __init__(self, interleave):
        self.interleave = interleave
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        if self.calls == 1:
            self.interleave()
        return 0.0


def test_run_atomically_retries_then_gives_up(db: Session):
    """Test that a permanently conflicting operation raises ConcurrencyExhausted."""
    attempts = []

    def operation():
        attempts.append(1)
        raise StaleDataError("version mismatch")

    with pytest.raises(ConcurrencyExhausted):
        SplitTestStore(db).run_atomically(operation, retries=3)

    assert len(attempts) == 3


def test_run_atomically_succeeds_after_conflict(db: Session):
    """Test that a transient conflict is retried and the result returned."""
    attempts = []

    def operation():
        attempts.append(1)
        if len(attempts) < 2:
            raise StaleDataError("version mismatch")
        return "ok"

    assert SplitTestStore(db).run_atomically(operation, retries=3) == "ok"
    assert len(attempts) == 2


def test_run_atomically_does_not_retry_domain_errors(db: Session):
    """Test that non-conflict errors propagate on the first attempt."""
    attempts = []

    def operation():
        attempts.append(1)
        raise ExperimentNotActive("abc", ExperimentStatus.DRAFT)

    with pytest.raises(ExperimentNotActive):
        SplitTestStore(db).run_atomically(operation, retries=3)

    assert len(attempts) == 1


def test_interleaved_allocations_never_exceed_target(db: Session, session_factory, make_split_test):
    """Test that two allocations racing for the last slot admit exactly one learner."""
    split_test = make_split_test(target_sample_size=2)
    split_test_id = split_test.id
    AllocationService(db, rng=CONTROL_RNG).allocate(split_test_id, "enr-1")

    other = session_factory()

    def competing_request():
        AllocationService(other, rng=CONTROL_RNG).allocate(split_test_id, "enr-3")

    try:
        with pytest.raises(ExperimentNotActive):
            AllocationService(db, rng=InterleavingRng(competing_request)).allocate(split_test_id, "enr-2")
    finally:
        other.close()

    db.expire_all()
    split_test = SplitTestStore(db).get(split_test_id)
    participants = db.query(Participant).filter_by(split_test_id=split_test_id).all()

    assert split_test.status == ExperimentStatus.COMPLETED
    assert split_test.total_sample == 2
    assert sorted(p.enrolment_id for p in participants) == ["enr-1", "enr-3"]


def test_ethical_stop_wins_over_inflight_allocation(db: Session, session_factory, make_split_test):
    """Test that an allocation racing an ethical stop is retried and refused."""
    split_test = make_split_test()
    split_test_id = split_test.id
    AllocationService(db, rng=CONTROL_RNG).allocate(split_test_id, "enr-1")

    other = session_factory()

    def offended_learner():
        OutcomeService(other).record_outcome(
            split_test_id, "enr-1", OutcomeDelta(feedback_sentiment=Sentiment.VERY_NEGATIVE)
        )

    try:
        with pytest.raises(ExperimentNotActive):
            AllocationService(db, rng=InterleavingRng(offended_learner)).allocate(split_test_id, "enr-2")
    finally:
        other.close()

    db.expire_all()
    split_test = SplitTestStore(db).get(split_test_id)

    assert split_test.status == ExperimentStatus.STOPPED_ETHICS
    assert split_test.total_sample == 1


def test_concurrent_negative_outcomes_still_trigger_pattern_stop(
    db: Session, session_factory, make_split_test, monkeypatch
):
    """Test that two negative updates evaluated side by side cannot both miss the third negative."""
    split_test = make_split_test()
    split_test_id = split_test.id
    allocation = AllocationService(db, rng=CONTROL_RNG)
    outcomes = OutcomeService(db)
    for i in range(3):
        allocation.allocate(split_test_id, f"enr-{i}")
    outcomes.record_outcome(
        split_test_id, "enr-0", OutcomeDelta(completed_module=True, feedback_sentiment=Sentiment.NEGATIVE)
    )
    outcomes.record_outcome(split_test_id, "enr-1", OutcomeDelta(completed_module=True))
    outcomes.record_outcome(split_test_id, "enr-2", OutcomeDelta(completed_module=True))

    other = session_factory()
    real_evaluate = ethics.evaluate
    interleaved = []

    def evaluate_then_interleave(*args, **kwargs):
        event = real_evaluate(*args, **kwargs)
        if not interleaved:
            interleaved.append(True)
            OutcomeService(other).record_outcome(
                split_test_id, "enr-2", OutcomeDelta(feedback_sentiment=Sentiment.NEGATIVE)
            )
        return event

    monkeypatch.setattr(ethics, "evaluate", evaluate_then_interleave)

    try:
        result = outcomes.record_outcome(
            split_test_id, "enr-1", OutcomeDelta(feedback_sentiment=Sentiment.NEGATIVE)
        )
    finally:
        other.close()

    assert result.ethical_stop is True

    db.expire_all()
    split_test = SplitTestStore(db).get(split_test_id)

    assert split_test.status == ExperimentStatus.STOPPED_ETHICS
    assert [e.condition_type for e in split_test.ethical_events] == [EthicalCondition.PATTERN_OF_DISSATISFACTION]


def test_concurrent_analyses_get_distinct_sequences(db: Session, session_factory, make_split_test):
    """Test that an analysis computed from a stale history is retried with the next sequence."""
    split_test = make_split_test()
    split_test_id = split_test.id

    stale = session_factory()
    try:
        assert SplitTestStore(stale).get(split_test_id).analyses == []
        AnalysisService(db).analyze(split_test_id)
        AnalysisService(stale).analyze(split_test_id)
    finally:
        stale.close()

    db.expire_all()
    split_test = SplitTestStore(db).get(split_test_id)

    assert [a.sequence for a in split_test.analyses] == [1, 2]
