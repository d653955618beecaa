"""Tests for the allocation engine."""
import random
import pytest
from sqlalchemy.orm import Session

from splitlab.errors import ExperimentNotActive, ExperimentNotFound, SampleExhausted
from splitlab.models import SplitTest, AllocationStrategy, ContentVersion, ExperimentStatus, Participant, StopReason
from splitlab.services.allocation import AllocationService, choose_version
from splitlab.services.lifecycle import LifecycleService

from conftest import CONTROL_RNG, VARIANT_RNG


def test_random_50_50_is_balanced():
    """Test that 50/50 allocation lands close to half control."""
    split_test = SplitTest(allocation_strategy=AllocationStrategy.RANDOM_50_50, target_sample_size=10000)
    rng = random.Random(1234)

    draws = [choose_version(split_test, rng) for _ in range(10000)]
    control_pct = draws.count(ContentVersion.CONTROL) / len(draws) * 100

    assert 47 <= control_pct <= 53, f"Control should be ~50%, got {control_pct}%"


def test_random_70_30_favours_control():
    """Test that 70/30 allocation sends about 70% to control."""
    split_test = SplitTest(allocation_strategy=AllocationStrategy.RANDOM_70_30, target_sample_size=10000)
    rng = random.Random(99)

    draws = [choose_version(split_test, rng) for _ in range(10000)]
    control_pct = draws.count(ContentVersion.CONTROL) / len(draws) * 100

    assert 67 <= control_pct <= 73, f"Control should be ~70%, got {control_pct}%"


def test_sequential_fills_control_first(db: Session, make_split_test):
    """Test that sequential allocation sends the first half to control and the rest to variant."""
    split_test = make_split_test(allocation_strategy="sequential", target_sample_size=6)
    service = AllocationService(db)

    versions = [service.allocate(split_test.id, f"enr-{i}").version for i in range(6)]

    assert versions == [ContentVersion.CONTROL] * 3 + [ContentVersion.VARIANT] * 3


def test_counters_match_participants(db: Session, make_split_test):
    """Test that the per-version counters always equal the participant counts."""
    split_test = make_split_test(target_sample_size=500)
    service = AllocationService(db, rng=random.Random(7))

    for i in range(120):
        service.allocate(split_test.id, f"enr-{i}")

    db.expire_all()
    control = db.query(Participant).filter_by(split_test_id=split_test.id, version=ContentVersion.CONTROL).count()
    variant = db.query(Participant).filter_by(split_test_id=split_test.id, version=ContentVersion.VARIANT).count()

    assert split_test.current_sample_a == control
    assert split_test.current_sample_b == variant
    assert control + variant == 120


def test_allocation_sequence_is_dense(db: Session, make_split_test):
    """Test that allocation_seq runs 1..N with no gaps."""
    split_test = make_split_test(target_sample_size=50)
    service = AllocationService(db, rng=random.Random(3))

    seqs = [service.allocate(split_test.id, f"enr-{i}").allocation_seq for i in range(10)]

    assert seqs == list(range(1, 11))


def test_reallocation_returns_existing_participant(db: Session, make_split_test):
    """Test that allocating the same enrolment twice keeps the first assignment."""
    split_test = make_split_test()

    first = AllocationService(db, rng=CONTROL_RNG).allocate(split_test.id, "enr-1")
    second = AllocationService(db, rng=VARIANT_RNG).allocate(split_test.id, "enr-1")

    assert first.id == second.id
    assert second.version == ContentVersion.CONTROL
    db.refresh(split_test)
    assert split_test.total_sample == 1


def test_draft_rejects_allocation(db: Session, make_split_test):
    """Test that a draft split test does not admit learners."""
    split_test = make_split_test(start=False)

    with pytest.raises(ExperimentNotActive):
        AllocationService(db).allocate(split_test.id, "enr-1")


def test_paused_rejects_allocation(db: Session, make_split_test):
    """Test that a paused split test does not admit learners."""
    split_test = make_split_test()
    LifecycleService(db).pause(split_test.id)

    with pytest.raises(ExperimentNotActive):
        AllocationService(db).allocate(split_test.id, "enr-1")


def test_unknown_split_test(db: Session):
    """Test that allocating into an unknown split test raises ExperimentNotFound."""
    with pytest.raises(ExperimentNotFound):
        AllocationService(db).allocate("00000000-0000-0000-0000-000000000000", "enr-1")


def test_reaching_target_completes(db: Session, make_split_test):
    """Test that the allocation reaching the target completes the split test in the same commit."""
    split_test = make_split_test(target_sample_size=3)
    service = AllocationService(db, rng=random.Random(5))

    for i in range(3):
        service.allocate(split_test.id, f"enr-{i}")

    db.refresh(split_test)
    assert split_test.status == ExperimentStatus.COMPLETED
    assert split_test.stopped_reason == StopReason.SAMPLE_REACHED
    assert split_test.completed_at is not None
    assert split_test.total_sample == 3

    with pytest.raises(ExperimentNotActive):
        service.allocate(split_test.id, "enr-late")


def test_full_but_active_raises_sample_exhausted(db: Session, make_split_test):
    """Test that a full split test still marked active is completed and the allocation refused."""
    split_test = make_split_test(target_sample_size=2)
    split_test.current_sample_a = 2
    db.commit()

    with pytest.raises(SampleExhausted):
        AllocationService(db).allocate(split_test.id, "enr-1")

    db.refresh(split_test)
    assert split_test.status == ExperimentStatus.COMPLETED
    assert split_test.total_sample == 2


def test_allocate_for_module(db: Session, make_split_test):
    """Test that enrolment allocation finds the module's active split test."""
    split_test = make_split_test(module_id="mod_savings")

    participant = AllocationService(db).allocate_for_module("mod_savings", "enr-1")
    assert participant is not None
    assert participant.split_test_id == split_test.id

    assert AllocationService(db).allocate_for_module("mod_without_test", "enr-2") is None


def test_allocate_for_module_ignores_inactive(db: Session, make_split_test):
    """Test that a draft split test does not capture enrolments."""
    make_split_test(start=False, module_id="mod_draft_only")

    assert AllocationService(db).allocate_for_module("mod_draft_only", "enr-1") is None
