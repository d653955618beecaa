"""Metrics and analysis schemas."""
from pydantic import BaseModel, Field
from typing import List
from datetime import datetime

from splitlab.models.split_test import Winner


class VersionMetrics(BaseModel):
    """Per-version metrics, always recomputed from the participant set."""

    sample_size: int = 0
    competency_achievement_rate: float = 0.0  # %
    avg_messages_to_competency: float = 0.0
    median_messages_to_competency: float = 0.0
    learner_satisfaction_avg: float = 0.0  # 1-5 scale
    stuck_rate: float = 0.0  # %
    completion_rate: float = 0.0  # %
    dropout_rate: float = 0.0  # %
    negative_feedback_count: int = 0  # negative or very negative
    very_negative_feedback_count: int = 0


class AnalysisResult(BaseModel):
    """Comparison of control and variant at one point in time."""

    analyzed_at: datetime

    control: VersionMetrics
    variant: VersionMetrics

    # Variant minus control, in percentage points
    competency_rate_difference: float
    competency_rate_improvement_pct: float
    messages_difference: float
    satisfaction_difference: float

    z_statistic: float
    p_value: float
    confidence_interval_lower: float
    confidence_interval_upper: float
    statistical_significance: bool

    sample_size_sufficient: bool
    p_value_reliable: bool
    warnings: List[str] = Field(default_factory=list)

    winner: Winner
    recommendation: str
    should_deploy_winner: bool
