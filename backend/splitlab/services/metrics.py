"""Per-version metrics folded from the participant set."""
from typing import Iterable
import numpy as np

from splitlab.models.split_test import ContentVersion
from splitlab.models.participant import Participant, Sentiment, NEGATIVE_SENTIMENTS
from splitlab.schemas.analysis import VersionMetrics


def _pct(count: int, total: int) -> float:
    return round(count / total * 100, 1) if total else 0.0


def calculate_version_metrics(participants: Iterable[Participant], version: ContentVersion) -> VersionMetrics:
    """
    Compute metrics for one version from the current participants.

    There are no running totals: every call folds over the participants as
    they are now, so the figures can never drift from the source records.
    Rates are percentages; averages and rates are rounded to one decimal.
    """
    cohort = [p for p in participants if p.version == version]
    if not cohort:
        return VersionMetrics()

    total = len(cohort)
    messages = [p.messages_to_competency for p in cohort if p.messages_to_competency is not None]
    scores = [p.satisfaction_score for p in cohort if p.satisfaction_score is not None]

    return VersionMetrics(
        sample_size=total,
        competency_achievement_rate=_pct(sum(1 for p in cohort if p.competency_achieved), total),
        avg_messages_to_competency=round(float(np.mean(messages)), 1) if messages else 0.0,
        median_messages_to_competency=float(np.median(messages)) if messages else 0.0,
        learner_satisfaction_avg=round(float(np.mean(scores)), 1) if scores else 0.0,
        stuck_rate=_pct(sum(1 for p in cohort if p.got_stuck), total),
        completion_rate=_pct(sum(1 for p in cohort if p.completed_module), total),
        dropout_rate=_pct(sum(1 for p in cohort if p.abandoned), total),
        negative_feedback_count=sum(1 for p in cohort if p.feedback_sentiment in NEGATIVE_SENTIMENTS),
        very_negative_feedback_count=sum(1 for p in cohort if p.feedback_sentiment == Sentiment.VERY_NEGATIVE),
    )
