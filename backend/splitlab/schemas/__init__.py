"""Pydantic schemas for request/response validation."""
from splitlab.schemas.analysis import VersionMetrics, AnalysisResult
from splitlab.schemas.outcome import (
    OutcomeDelta,
    AllocateRequest,
    EnrolmentRequest,
    OutcomeRequest,
    SatisfactionRequest,
    ParticipantResponse,
    EthicalEventResponse,
)
from splitlab.schemas.split_test import (
    VersionPayload,
    StopConditions,
    StopConditionOverrides,
    CreateSplitTestRequest,
    StopRequest,
    ConcludeRequest,
    SplitTestResponse,
    SplitTestSummary,
)

__all__ = [
    "VersionMetrics",
    "AnalysisResult",
    "OutcomeDelta",
    "AllocateRequest",
    "EnrolmentRequest",
    "OutcomeRequest",
    "SatisfactionRequest",
    "ParticipantResponse",
    "EthicalEventResponse",
    "VersionPayload",
    "StopConditions",
    "StopConditionOverrides",
    "CreateSplitTestRequest",
    "StopRequest",
    "ConcludeRequest",
    "SplitTestResponse",
    "SplitTestSummary",
]
