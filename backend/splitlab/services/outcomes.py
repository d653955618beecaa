"""Outcome recorder: folds learner progress into participant records."""
import structlog
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session
from pydantic import ValidationError as PydanticValidationError

from splitlab.errors import ParticipantNotFound, ValidationError
from splitlab.models.split_test import SplitTest
from splitlab.models.participant import Participant, Sentiment
from splitlab.models.ethical_event import EthicalEvent, Severity
from splitlab.models.types import utcnow
from splitlab.schemas.outcome import OutcomeDelta
from splitlab.services import ethics
from splitlab.services.store import SplitTestStore

logger = structlog.get_logger()

# Once true, never reverted; re-sending true is a no-op
STICKY_FLAGS = ("competency_achieved", "got_stuck", "completed_module", "abandoned")

# Set when a new value arrives
VALUE_FIELDS = (
    "messages_to_competency",
    "time_to_competency_minutes",
    "satisfaction_score",
    "feedback_sentiment",
    "feedback_text_anonymized",
)


@dataclass
class OutcomeResult:
    participant: Participant
    ethical_event: Optional[EthicalEvent] = None
    changed_fields: List[str] = field(default_factory=list)

    @property
    def ethical_stop(self) -> bool:
        return self.ethical_event is not None and self.ethical_event.severity == Severity.STOP


def apply_outcome(split_test: SplitTest, participant: Participant, delta: OutcomeDelta, now: datetime) -> List[str]:
    """
    Apply an outcome delta to a participant; returns the names of fields that changed.

    The first completion is stamped with a time and a completion sequence
    number taken from the split test's completion counter. Any change also
    touches last_outcome_at, so the split test row is updated and concurrent
    outcomes (which the ethical monitor reads across participants) are
    serialized by the optimistic version check.
    """
    changed = []

    for flag in STICKY_FLAGS:
        if getattr(delta, flag) and not getattr(participant, flag):
            setattr(participant, flag, True)
            changed.append(flag)

    for name in VALUE_FIELDS:
        value = getattr(delta, name)
        if value is not None and getattr(participant, name) != value:
            setattr(participant, name, value)
            changed.append(name)

    if "completed_module" in changed:
        split_test.completion_count = (split_test.completion_count or 0) + 1
        participant.completion_seq = split_test.completion_count
        participant.completed_at = now

    if changed:
        split_test.last_outcome_at = now

    return changed


class OutcomeService:
    """Records participant outcomes and runs the ethical monitor on each one."""

    def __init__(self, db: Session):
        self.db = db
        self.store = SplitTestStore(db)

    def record_outcome(self, split_test_id, enrolment_id: str, delta: OutcomeDelta) -> OutcomeResult:
        """
        Record an outcome update for an allocated enrolment.

        The ethical monitor runs synchronously on the updated participant;
        the update, any ethical event and any forced stop commit together.
        Outcomes are accepted in every status (allocated learners keep
        progressing after a test stops); the monitor only acts while the
        test is active or paused.

        Raises:
            ExperimentNotFound: Unknown split test
            ParticipantNotFound: The enrolment was never allocated here
            ConcurrencyExhausted: Too many conflicting concurrent updates
        """
        def operation():
            split_test = self.store.get(split_test_id)
            participant = self.store.get_participant(split_test, enrolment_id)
            if participant is None:
                raise ParticipantNotFound(split_test.id, enrolment_id)

            now = utcnow()
            changed = apply_outcome(split_test, participant, delta, now)
            event = ethics.evaluate(split_test, participant.version, participant, now=now)
            return OutcomeResult(participant=participant, ethical_event=event, changed_fields=changed)

        result = self.store.run_atomically(operation)

        logger.info(
            "outcome_recorded",
            split_test_id=str(result.participant.split_test_id),
            version=result.participant.version.value,
            changed_fields=result.changed_fields,
            ethical_stop=result.ethical_stop
        )
        return result

    def record_satisfaction(
        self,
        split_test_id,
        enrolment_id: str,
        score: int,
        feedback_text: Optional[str] = None,
        sentiment: Optional[Sentiment] = None
    ) -> OutcomeResult:
        """Record a satisfaction score with optional anonymized feedback."""
        try:
            delta = OutcomeDelta(
                satisfaction_score=score,
                feedback_text_anonymized=feedback_text,
                feedback_sentiment=sentiment
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid satisfaction feedback: {e.errors()[0]['msg']}") from e
        return self.record_outcome(split_test_id, enrolment_id, delta)
