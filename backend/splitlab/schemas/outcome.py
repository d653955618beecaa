"""Allocation and outcome request/response schemas."""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from uuid import UUID

from splitlab.models.split_test import ContentVersion
from splitlab.models.participant import Sentiment
from splitlab.models.ethical_event import EthicalCondition, Severity


class OutcomeDelta(BaseModel):
    """Incremental outcome update for one participant. Unset fields are left alone."""

    competency_achieved: Optional[bool] = None
    messages_to_competency: Optional[int] = Field(None, ge=0)
    time_to_competency_minutes: Optional[int] = Field(None, ge=0)
    satisfaction_score: Optional[int] = Field(None, ge=1, le=5)
    got_stuck: Optional[bool] = None
    completed_module: Optional[bool] = None
    abandoned: Optional[bool] = None
    feedback_sentiment: Optional[Sentiment] = None
    feedback_text_anonymized: Optional[str] = Field(None, max_length=2000)


class AllocateRequest(BaseModel):
    enrolment_id: str = Field(..., min_length=1, max_length=100)


class EnrolmentRequest(BaseModel):
    """A learner started a module; allocate if the module has an active split test."""

    module_id: str = Field(..., min_length=1, max_length=100)
    enrolment_id: str = Field(..., min_length=1, max_length=100)

    class Config:
        json_schema_extra = {
            "example": {
                "module_id": "mod_intro_budgeting",
                "enrolment_id": "enr_8f2c1a"
            }
        }


class OutcomeRequest(BaseModel):
    enrolment_id: str = Field(..., min_length=1, max_length=100)
    outcome: OutcomeDelta


class SatisfactionRequest(BaseModel):
    enrolment_id: str = Field(..., min_length=1, max_length=100)
    score: int = Field(..., ge=1, le=5)
    feedback_text: Optional[str] = Field(None, max_length=2000, description="Anonymized free text")
    sentiment: Optional[Sentiment] = None


class ParticipantResponse(BaseModel):
    enrolment_id: str
    version: ContentVersion
    allocation_seq: int
    assigned_at: datetime
    started_at: datetime

    competency_achieved: bool
    messages_to_competency: Optional[int] = None
    time_to_competency_minutes: Optional[int] = None
    satisfaction_score: Optional[int] = None
    got_stuck: bool
    completed_module: bool
    abandoned: bool
    feedback_sentiment: Optional[Sentiment] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EthicalEventResponse(BaseModel):
    id: UUID
    triggered_at: datetime
    condition_type: EthicalCondition
    offending_version: ContentVersion
    feedback_summary: str
    consecutive_negative_count: Optional[int] = None
    severity: Severity
    test_stopped: bool

    class Config:
        from_attributes = True
