"""Allocation engine: assigns arriving learners to control or variant."""
import random
import structlog
from typing import Optional
from sqlalchemy.orm import Session

from splitlab.errors import ExperimentNotActive, SampleExhausted
from splitlab.models.split_test import SplitTest, ExperimentStatus, AllocationStrategy, ContentVersion
from splitlab.models.participant import Participant
from splitlab.models.types import utcnow
from splitlab.services import lifecycle
from splitlab.services.store import SplitTestStore

logger = structlog.get_logger()

# Probability of control for the randomised strategies
CONTROL_PROBABILITY = {
    AllocationStrategy.RANDOM_50_50: 0.5,
    AllocationStrategy.RANDOM_70_30: 0.7,
}

_default_rng = random.Random()


def choose_version(split_test: SplitTest, rng) -> ContentVersion:
    """
    Pick a version for the next learner.

    Randomised strategies draw one Bernoulli sample per call and ignore
    the running counts. Sequential sends the first half of the target to
    control and the rest to variant, using only the current counts.

    Args:
        split_test: The split test being allocated into
        rng: Anything with a random() method returning a float in [0, 1)
    """
    if split_test.allocation_strategy == AllocationStrategy.SEQUENTIAL:
        if split_test.total_sample < split_test.target_sample_size / 2:
            return ContentVersion.CONTROL
        return ContentVersion.VARIANT

    probability = CONTROL_PROBABILITY[split_test.allocation_strategy]
    return ContentVersion.CONTROL if rng.random() < probability else ContentVersion.VARIANT


class AllocationService:
    """Allocates learners into split tests."""

    def __init__(self, db: Session, rng=None):
        self.db = db
        self.store = SplitTestStore(db)
        self.rng = rng or _default_rng

    def allocate(self, split_test_id, enrolment_id: str) -> Participant:
        """
        Allocate an enrolment to a version of an active split test.

        The status check, the sample-size check and the counter increment
        all happen inside one optimistic unit of work: if another allocation
        or an ethical stop commits first, this attempt is retried against
        the new state. Re-allocating an enrolment returns its existing
        participant unchanged.

        Returns:
            The participant record (new or existing)

        Raises:
            ExperimentNotFound: Unknown split test
            ExperimentNotActive: Status is anything but active
            SampleExhausted: The target sample has already been reached
            ConcurrencyExhausted: Too many conflicting concurrent updates
        """
        def operation():
            split_test = self.store.get(split_test_id)

            existing = self.store.get_participant(split_test, enrolment_id)
            if existing is not None:
                return existing, False

            if split_test.status != ExperimentStatus.ACTIVE:
                raise ExperimentNotActive(split_test.id, split_test.status)

            now = utcnow()
            allocated = split_test.total_sample + 1
            if allocated > split_test.target_sample_size:
                # Full but still active: complete it so later calls see the right status
                lifecycle.transition(split_test, ExperimentStatus.COMPLETED, now=now)
                return None, True

            version = choose_version(split_test, self.rng)
            if version == ContentVersion.CONTROL:
                split_test.current_sample_a += 1
            else:
                split_test.current_sample_b += 1

            participant = Participant(
                split_test_id=split_test.id,
                enrolment_id=enrolment_id,
                version=version,
                allocation_seq=allocated,
                assigned_at=now,
                started_at=now,
                competency_achieved=False,
                got_stuck=False,
                completed_module=False,
                abandoned=False,
            )
            self.db.add(participant)

            if allocated >= split_test.target_sample_size:
                lifecycle.transition(split_test, ExperimentStatus.COMPLETED, now=now)

            return participant, False

        participant, exhausted = self.store.run_atomically(operation)

        if exhausted:
            split_test = self.store.get(split_test_id)
            raise SampleExhausted(split_test.id, split_test.target_sample_size)

        logger.info(
            "participant_allocated",
            split_test_id=str(participant.split_test_id),
            version=participant.version.value,
            allocation_seq=participant.allocation_seq
        )
        return participant

    def allocate_for_module(self, module_id: str, enrolment_id: str) -> Optional[Participant]:
        """
        Allocate a learner starting a module, if the module has an active split test.

        Returns:
            The participant, or None when no split test is running for the module
        """
        split_test = self.store.get_active_for_module(module_id)
        if split_test is None:
            return None
        return self.allocate(split_test.id, enrolment_id)
