"""Ethical monitor: stops a split test when learners are being harmed.

Two rules run on every outcome update:

1. learner_offended - a single very negative learner stops the test at once.
   It is never downgraded to a warning and never waits for more data.
2. pattern_of_dissatisfaction - the last three completions on one version,
   in completion order and within the current active run, all carry
   negative or very negative sentiment.

A stop event and the stopped_ethics transition are applied to the same
aggregate in the same unit of work, so they commit (or fail) together.
"""
import structlog
from datetime import datetime
from typing import List, Optional

from splitlab.models.split_test import SplitTest, ContentVersion, ExperimentStatus, StopReason
from splitlab.models.participant import Participant, Sentiment, NEGATIVE_SENTIMENTS
from splitlab.models.ethical_event import EthicalEvent, EthicalCondition, Severity
from splitlab.models.types import utcnow
from splitlab.services import lifecycle
from splitlab.services.store import resolve_stop_conditions

logger = structlog.get_logger()

PATTERN_WINDOW = 3
MONITORED_STATUSES = frozenset({ExperimentStatus.ACTIVE, ExperimentStatus.PAUSED})


def completion_window(split_test: SplitTest, version: ContentVersion, size: int = PATTERN_WINDOW) -> List[Participant]:
    """The most recent `size` completions on a version during the current active run."""
    run_started_at = split_test.run_started_at
    completed = [
        p for p in split_test.participants
        if p.version == version
        and p.completed_module
        and p.completion_seq is not None
        and (run_started_at is None or p.completed_at >= run_started_at)
    ]
    completed.sort(key=lambda p: p.completion_seq)
    return completed[-size:]


def _learner_offended(participant: Participant) -> EthicalEvent:
    return EthicalEvent(
        condition_type=EthicalCondition.LEARNER_OFFENDED,
        offending_version=participant.version,
        feedback_summary=participant.feedback_text_anonymized or "Learner expressed significant distress",
        severity=Severity.STOP,
        test_stopped=True,
    )


def _pattern_of_dissatisfaction(
    split_test: SplitTest,
    version: ContentVersion,
    participant: Participant,
    stop_enabled: bool
) -> Optional[EthicalEvent]:
    window = completion_window(split_test, version)
    if len(window) < PATTERN_WINDOW or participant not in window:
        return None
    if not all(p.feedback_sentiment in NEGATIVE_SENTIMENTS for p in window):
        return None

    # Already reported this window (e.g. a later update from the same learner)
    newest_completion = window[-1].completed_at
    for event in split_test.ethical_events:
        if (event.condition_type == EthicalCondition.PATTERN_OF_DISSATISFACTION
                and event.offending_version == version
                and event.triggered_at >= newest_completion):
            return None

    severity = Severity.STOP if stop_enabled else Severity.WARNING
    return EthicalEvent(
        condition_type=EthicalCondition.PATTERN_OF_DISSATISFACTION,
        offending_version=version,
        feedback_summary=f"{PATTERN_WINDOW} consecutive learners completed with negative feedback",
        consecutive_negative_count=PATTERN_WINDOW,
        severity=severity,
        test_stopped=severity == Severity.STOP,
    )


def evaluate(
    split_test: SplitTest,
    version: ContentVersion,
    participant: Participant,
    now: Optional[datetime] = None
) -> Optional[EthicalEvent]:
    """
    Check one updated participant against the ethical stop rules.

    Returns the recorded event, or None. At most one event per call; the
    single very-negative rule wins over the pattern rule. A stop event moves
    the split test to stopped_ethics; a warning is only recorded.

    Args:
        split_test: The aggregate being updated (mutated in place)
        version: The participant's version
        participant: The participant whose outcome just changed
        now: Trigger timestamp (defaults to the current UTC time)
    """
    if split_test.status not in MONITORED_STATUSES:
        return None

    conditions = resolve_stop_conditions(split_test)

    event = None
    if participant.feedback_sentiment == Sentiment.VERY_NEGATIVE and conditions.learner_very_offended:
        event = _learner_offended(participant)
    else:
        event = _pattern_of_dissatisfaction(
            split_test, version, participant, conditions.three_dissatisfied_in_row
        )

    if event is None:
        return None

    now = now or utcnow()
    event.triggered_at = now
    event.sequence = len(split_test.ethical_events) + 1
    split_test.ethical_events.append(event)

    if event.severity == Severity.STOP:
        lifecycle.force_ethics_stop(
            split_test,
            StopReason(event.condition_type.value),
            {"offending_version": version.value, "condition": event.condition_type.value},
            now=now
        )
        logger.error(
            "ethical_stop",
            split_test_id=str(split_test.id),
            condition=event.condition_type.value,
            offending_version=version.value
        )
    else:
        logger.warning(
            "ethical_warning",
            split_test_id=str(split_test.id),
            condition=event.condition_type.value,
            offending_version=version.value
        )

    return event
