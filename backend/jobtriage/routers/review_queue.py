"""Review queue API: list, approve, reject, clear, decision aid."""
from typing import List

from fastapi import APIRouter, Depends

from ..dependencies import get_pipeline
from ..domain import ReviewQueueItem
from ..escalation import Unavailable
from ..pipeline import TriagePipeline
from ..schemas import (
    ApplicationResponse,
    ClearQueueResponse,
    DecisionAidResponse,
    ReviewItemResponse,
    StatusCandidateResponse,
)

router = APIRouter(prefix="/api/review-queue", tags=["review-queue"])


def _item_response(item: ReviewQueueItem) -> ReviewItemResponse:
    pe = item.processed
    return ReviewItemResponse(
        item_id=item.item_id,
        queued_at=item.queued_at,
        subject=pe.email.subject,
        sender=pe.email.sender,
        received_at=pe.received_at,
        confidence=pe.score.value,
        reasoning=pe.score.reasoning,
        fields=pe.fields.to_dict(),
        status=StatusCandidateResponse.model_validate(pe.status.to_dict()),
        suggested=ApplicationResponse.model_validate(item.suggested.to_dict()),
    )


@router.get("", response_model=List[ReviewItemResponse])
def list_items(pipeline: TriagePipeline = Depends(get_pipeline)):
    return [_item_response(item) for item in pipeline.review_queue.list()]


@router.get("/{item_id}", response_model=ReviewItemResponse)
def get_item(item_id: str, pipeline: TriagePipeline = Depends(get_pipeline)):
    return _item_response(pipeline.review_queue.get(item_id))


@router.post("/{item_id}/approve", response_model=ApplicationResponse)
def approve_item(item_id: str, pipeline: TriagePipeline = Depends(get_pipeline)):
    record = pipeline.review_queue.approve(item_id)
    return ApplicationResponse.model_validate(record.to_dict())


@router.post("/{item_id}/reject", status_code=204)
def reject_item(item_id: str, pipeline: TriagePipeline = Depends(get_pipeline)):
    pipeline.review_queue.reject(item_id)


@router.delete("", response_model=ClearQueueResponse)
def clear_queue(pipeline: TriagePipeline = Depends(get_pipeline)):
    return ClearQueueResponse(cleared=pipeline.review_queue.clear())


@router.post("/{item_id}/decision-aid", response_model=DecisionAidResponse)
def decision_aid(item_id: str, pipeline: TriagePipeline = Depends(get_pipeline)):
    outcome = pipeline.review_queue.decision_aid(item_id)
    if isinstance(outcome, Unavailable):
        return DecisionAidResponse(
            available=False,
            reason=outcome.reason,
            tier=outcome.tier.value if outcome.tier else None,
        )
    return DecisionAidResponse(
        available=True,
        is_job_related=outcome.is_job_related,
        confidence=outcome.confidence,
        reasoning=outcome.reasoning,
        tier=outcome.tier.value,
        model=outcome.model,
        fields=outcome.fields.to_dict(),
        status=StatusCandidateResponse.model_validate(outcome.status.to_dict()) if outcome.status else None,
    )
