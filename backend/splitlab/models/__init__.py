"""Database models."""
from splitlab.models.split_test import (
    SplitTest,
    ExperimentStatus,
    AllocationStrategy,
    ContentVersion,
    Winner,
    StopReason,
)
from splitlab.models.participant import Participant, Sentiment
from splitlab.models.ethical_event import EthicalEvent, EthicalCondition, Severity
from splitlab.models.analysis import Analysis

__all__ = [
    "SplitTest",
    "ExperimentStatus",
    "AllocationStrategy",
    "ContentVersion",
    "Winner",
    "StopReason",
    "Participant",
    "Sentiment",
    "EthicalEvent",
    "EthicalCondition",
    "Severity",
    "Analysis",
]
