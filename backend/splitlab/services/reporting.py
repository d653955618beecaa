"""Dashboard summaries and condition checks."""
import structlog
from datetime import datetime
from typing import Dict, List, Optional
from sqlalchemy.orm import Session

from splitlab.models.split_test import SplitTest, ContentVersion, ExperimentStatus
from splitlab.models.types import utcnow
from splitlab.schemas.split_test import SplitTestSummary
from splitlab.services import lifecycle
from splitlab.services.analysis import AnalysisService
from splitlab.services.metrics import calculate_version_metrics
from splitlab.services.store import SplitTestStore, resolve_stop_conditions

logger = structlog.get_logger()


def summarize(split_test: SplitTest, now: Optional[datetime] = None) -> SplitTestSummary:
    """Build the dashboard summary of a split test as of `now`."""
    now = now or utcnow()
    participants = list(split_test.participants)
    control = calculate_version_metrics(participants, ContentVersion.CONTROL)
    variant = calculate_version_metrics(participants, ContentVersion.VARIANT)

    total = split_test.total_sample
    target = split_test.target_sample_size or 0
    progress = min(100, round(total / target * 100)) if target else 0

    days_running = (now - split_test.started_at).days if split_test.started_at else 0
    max_days = resolve_stop_conditions(split_test).max_duration_days

    return SplitTestSummary(
        split_test_id=split_test.id,
        module_id=split_test.module_id,
        module_title=split_test.module_title,
        course_title=split_test.course_title,
        status=split_test.status,
        target_sample_size=target,
        current_total_sample=total,
        progress_percentage=progress,
        control_competency_rate=control.competency_achievement_rate,
        variant_competency_rate=variant.competency_achievement_rate,
        current_difference_pct=round(variant.competency_achievement_rate - control.competency_achievement_rate, 1),
        has_ethical_concerns=len(split_test.ethical_events) > 0,
        days_running=max(days_running, 0),
        duration_exceeded=max_days is not None and days_running >= max_days,
        started_at=split_test.started_at,
    )


class ReportingService:
    """Read-side views for administrators."""

    def __init__(self, db: Session):
        self.db = db
        self.store = SplitTestStore(db)

    def get_summary(self, split_test_id) -> SplitTestSummary:
        return summarize(self.store.get(split_test_id))

    def list_summaries(self, status: Optional[ExperimentStatus] = None, limit: int = 50) -> List[SplitTestSummary]:
        now = utcnow()
        return [summarize(split_test, now) for split_test in self.store.list(status=status, limit=limit)]

    def check_conditions(self, split_test_id) -> Dict[str, bool]:
        """
        Report the stop state of a split test, completing it if its sample is reached.

        A split test that reaches its target through this check is analysed
        straight away, unless its sample_reached stop condition is off.
        Ethical stops are never triggered here; the monitor already ran on
        every outcome.
        """
        def operation():
            split_test = self.store.get(split_test_id)
            if split_test.status == ExperimentStatus.ACTIVE and split_test.total_sample >= split_test.target_sample_size:
                lifecycle.transition(split_test, ExperimentStatus.COMPLETED)
                return split_test, True
            return split_test, False

        split_test, completed_now = self.store.run_atomically(operation)

        if completed_now and resolve_stop_conditions(split_test).sample_reached:
            AnalysisService(self.db).analyze(split_test.id)

        ethical_stop = split_test.status == ExperimentStatus.STOPPED_ETHICS
        sample_reached = split_test.status == ExperimentStatus.COMPLETED

        logger.info(
            "conditions_checked",
            split_test_id=str(split_test.id),
            ethical_stop=ethical_stop,
            sample_reached=sample_reached,
            completed_now=completed_now
        )
        return {
            "ethical_stop": ethical_stop,
            "sample_reached": sample_reached,
            "test_stopped": ethical_stop or sample_reached,
        }
