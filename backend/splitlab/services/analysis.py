"""Statistical analyzer for split tests."""
import structlog
import numpy as np
from datetime import datetime
from typing import List, NamedTuple, Optional
from scipy import stats
from sqlalchemy.orm import Session

from splitlab.models.split_test import SplitTest, ContentVersion, Winner
from splitlab.models.analysis import Analysis
from splitlab.models.types import utcnow
from splitlab.schemas.analysis import AnalysisResult, VersionMetrics
from splitlab.services.metrics import calculate_version_metrics
from splitlab.services.store import SplitTestStore, resolve_stop_conditions

logger = structlog.get_logger()

INSUFFICIENT_SAMPLE = "INSUFFICIENT_SAMPLE"


class ProportionTest(NamedTuple):
    z_statistic: float
    p_value: float
    difference: float  # rate_b - rate_a, as a fraction
    ci_lower: float
    ci_upper: float


def two_proportion_z_test(
    successes_a: int,
    n_a: int,
    successes_b: int,
    n_b: int,
    confidence: float = 0.95
) -> ProportionTest:
    """
    Two-sided two-sample z-test for proportions with pooled variance.

    The confidence interval for the difference uses the unpooled standard
    error. An empty group or a pooled rate of exactly 0 or 1 gives z=0, p=1.
    """
    if n_a == 0 or n_b == 0:
        return ProportionTest(0.0, 1.0, 0.0, 0.0, 0.0)

    p_a = successes_a / n_a
    p_b = successes_b / n_b
    difference = p_b - p_a

    z_critical = float(stats.norm.ppf(1 - (1 - confidence) / 2))
    se_difference = float(np.sqrt(p_a * (1 - p_a) / n_a + p_b * (1 - p_b) / n_b))
    ci_lower = difference - z_critical * se_difference
    ci_upper = difference + z_critical * se_difference

    p_pooled = (successes_a + successes_b) / (n_a + n_b)
    if p_pooled <= 0 or p_pooled >= 1:
        return ProportionTest(0.0, 1.0, difference, ci_lower, ci_upper)

    se_pooled = float(np.sqrt(p_pooled * (1 - p_pooled) * (1 / n_a + 1 / n_b)))
    z_statistic = difference / se_pooled
    p_value = float(2 * stats.norm.sf(abs(z_statistic)))

    return ProportionTest(z_statistic, p_value, difference, ci_lower, ci_upper)


def decide_winner(significant: bool, difference: float) -> Winner:
    if not significant or difference == 0:
        return Winner.NO_DIFFERENCE
    return Winner.VARIANT if difference > 0 else Winner.CONTROL


def should_deploy(winner: Winner, control: VersionMetrics, variant: VersionMetrics) -> bool:
    """Only a variant win is deployable, and never if learners liked it less."""
    if winner != Winner.VARIANT:
        return False
    return (
        variant.negative_feedback_count <= control.negative_feedback_count
        and variant.very_negative_feedback_count <= control.very_negative_feedback_count
    )


def build_recommendation(
    split_test: SplitTest,
    winner: Winner,
    deploy: bool,
    sufficient: bool,
    min_sample: int,
    control: VersionMetrics,
    variant: VersionMetrics,
    difference_pts: float,
    improvement_pct: float,
    p_value: float
) -> str:
    control_name = (split_test.control or {}).get("name", "control")
    variant_name = (split_test.variant or {}).get("name", "variant")

    if not sufficient:
        return (
            f"Not enough data yet: each version needs at least {min_sample} learners "
            f"(control {control.sample_size}, variant {variant.sample_size}). "
            f"Keep the test running before drawing conclusions."
        )
    if winner == Winner.NO_DIFFERENCE:
        return (
            f"No statistically significant difference in competency achievement (p = {p_value:.3f}). "
            f"Consider keeping the current version or extending the test."
        )
    if winner == Winner.CONTROL:
        return (
            f"Keep the control ({control_name}): the variant performed {abs(difference_pts):.1f} points "
            f"worse on competency achievement (p = {p_value:.3f})."
        )
    if deploy:
        return (
            f"Deploy the variant ({variant_name}): competency achievement {difference_pts:+.1f} points "
            f"({improvement_pct:.1f}% relative improvement, p = {p_value:.3f})."
        )
    return (
        f"The variant ({variant_name}) improves competency achievement by {difference_pts:.1f} points "
        f"(p = {p_value:.3f}) but drew more negative learner feedback than the control "
        f"({variant.negative_feedback_count} vs {control.negative_feedback_count}). "
        f"Review the feedback before deploying."
    )


def compute_analysis(split_test: SplitTest, now: Optional[datetime] = None) -> AnalysisResult:
    """
    Compare control and variant from the current participants.

    Pure: reads the aggregate and returns a new result. With the same
    participants it always returns the same metrics, p-value and winner.
    Below the minimum sample per version the result is still produced,
    but significance is forced false and the INSUFFICIENT_SAMPLE warning
    is attached.
    """
    conditions = resolve_stop_conditions(split_test)
    participants = list(split_test.participants)

    control = calculate_version_metrics(participants, ContentVersion.CONTROL)
    variant = calculate_version_metrics(participants, ContentVersion.VARIANT)

    successes_a = sum(1 for p in participants if p.version == ContentVersion.CONTROL and p.competency_achieved)
    successes_b = sum(1 for p in participants if p.version == ContentVersion.VARIANT and p.competency_achieved)
    test = two_proportion_z_test(successes_a, control.sample_size, successes_b, variant.sample_size)

    min_sample = conditions.min_sample_for_significance
    sufficient = min(control.sample_size, variant.sample_size) >= min_sample
    significant = sufficient and test.p_value < conditions.significance_level

    winner = decide_winner(significant, test.difference)
    deploy = should_deploy(winner, control, variant)

    rate_a = successes_a / control.sample_size if control.sample_size else 0.0
    difference_pts = round(test.difference * 100, 1)
    improvement_pct = round(test.difference / rate_a * 100, 1) if rate_a > 0 else 0.0

    return AnalysisResult(
        analyzed_at=now or utcnow(),
        control=control,
        variant=variant,
        competency_rate_difference=difference_pts,
        competency_rate_improvement_pct=improvement_pct,
        messages_difference=round(variant.avg_messages_to_competency - control.avg_messages_to_competency, 1),
        satisfaction_difference=round(variant.learner_satisfaction_avg - control.learner_satisfaction_avg, 1),
        z_statistic=round(test.z_statistic, 4),
        p_value=round(test.p_value, 6),
        confidence_interval_lower=round(test.ci_lower * 100, 2),
        confidence_interval_upper=round(test.ci_upper * 100, 2),
        statistical_significance=significant,
        sample_size_sufficient=sufficient,
        p_value_reliable=sufficient,
        warnings=[] if sufficient else [INSUFFICIENT_SAMPLE],
        winner=winner,
        recommendation=build_recommendation(
            split_test, winner, deploy, sufficient, min_sample,
            control, variant, difference_pts, improvement_pct, test.p_value
        ),
        should_deploy_winner=deploy,
    )


class AnalysisService:
    """Runs and stores analyses. Never takes the split test's version token."""

    def __init__(self, db: Session):
        self.db = db
        self.store = SplitTestStore(db)

    def analyze(self, split_test_id) -> AnalysisResult:
        """
        Analyze a split test and append the result to its history.

        Earlier analyses are never modified; the newest one is the split
        test's latest_analysis. May run alongside allocation and outcome
        traffic; the snapshot it reads can be stale by the time it returns.
        Sequence numbers are unique per split test, so two concurrent runs
        cannot both claim the same one; the loser is retried.

        Raises:
            ExperimentNotFound: Unknown split test
            ConcurrencyExhausted: Too many concurrent analyses
        """
        def operation():
            split_test = self.store.get(split_test_id)
            result = compute_analysis(split_test)
            split_test.analyses.append(Analysis(
                sequence=len(split_test.analyses) + 1,
                analyzed_at=result.analyzed_at,
                winner=result.winner,
                p_value=result.p_value,
                statistical_significance=result.statistical_significance,
                result=result.model_dump(mode="json"),
            ))
            return result

        result = self.store.run_atomically(operation)

        if not result.sample_size_sufficient:
            logger.warning(
                "analysis_insufficient_sample",
                split_test_id=str(split_test_id),
                control_sample=result.control.sample_size,
                variant_sample=result.variant.sample_size
            )
        logger.info(
            "analysis_completed",
            split_test_id=str(split_test_id),
            winner=result.winner.value,
            p_value=result.p_value,
            significant=result.statistical_significance
        )
        return result

    def latest(self, split_test_id) -> Optional[AnalysisResult]:
        split_test = self.store.get(split_test_id)
        latest = split_test.latest_analysis
        return AnalysisResult.model_validate(latest.result) if latest else None

    def history(self, split_test_id) -> List[AnalysisResult]:
        split_test = self.store.get(split_test_id)
        return [AnalysisResult.model_validate(a.result) for a in split_test.analyses]
