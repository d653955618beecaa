"""Learner events from the enrolment/content platform."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from splitlab.database import get_db
from splitlab.middleware.auth import require_platform
from splitlab.middleware.logging import get_logger
from splitlab.schemas.outcome import (
    AllocateRequest,
    EnrolmentRequest,
    OutcomeRequest,
    SatisfactionRequest,
    ParticipantResponse,
    EthicalEventResponse,
)
from splitlab.services.allocation import AllocationService
from splitlab.services.outcomes import OutcomeService, OutcomeResult

router = APIRouter(prefix="/split-tests")
logger = get_logger()


def _outcome_payload(result: OutcomeResult) -> dict:
    event = result.ethical_event
    return {
        "success": True,
        "data": {
            "participant": ParticipantResponse.model_validate(result.participant),
            "ethical_stop": result.ethical_stop,
            "ethical_event": EthicalEventResponse.model_validate(event) if event is not None else None,
        },
    }


@router.post("/enrolments")
async def enrol(
    request: EnrolmentRequest,
    caller: str = Depends(require_platform),
    db: Session = Depends(get_db)
):
    """
    A learner started a module.

    Allocates the learner if the module has an active split test; otherwise
    the platform serves the current content and allocated is false.
    """
    participant = AllocationService(db).allocate_for_module(request.module_id, request.enrolment_id)
    if participant is None:
        return {
            "success": True,
            "data": {"allocated": False, "split_test_id": None, "version": None},
        }

    return {
        "success": True,
        "data": {
            "allocated": True,
            "split_test_id": str(participant.split_test_id),
            "version": participant.version.value,
        },
    }


@router.post("/{split_test_id}/allocate")
async def allocate(
    split_test_id: str,
    request: AllocateRequest,
    caller: str = Depends(require_platform),
    db: Session = Depends(get_db)
):
    participant = AllocationService(db).allocate(split_test_id, request.enrolment_id)
    return {"success": True, "data": ParticipantResponse.model_validate(participant)}


@router.post("/{split_test_id}/outcome")
async def record_outcome(
    split_test_id: str,
    request: OutcomeRequest,
    caller: str = Depends(require_platform),
    db: Session = Depends(get_db)
):
    """Record learner progress. The ethical monitor runs before this returns."""
    result = OutcomeService(db).record_outcome(split_test_id, request.enrolment_id, request.outcome)
    return _outcome_payload(result)


@router.post("/{split_test_id}/satisfaction")
async def record_satisfaction(
    split_test_id: str,
    request: SatisfactionRequest,
    caller: str = Depends(require_platform),
    db: Session = Depends(get_db)
):
    result = OutcomeService(db).record_satisfaction(
        split_test_id,
        request.enrolment_id,
        score=request.score,
        feedback_text=request.feedback_text,
        sentiment=request.sentiment
    )
    return _outcome_payload(result)
