"""Applications API: list, detail, direct status edit, audit trail."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_pipeline
from ..merger import format_provenance
from ..pipeline import TriagePipeline
from ..schemas import ApplicationResponse, StatusUpdateRequest, TransitionEventResponse

router = APIRouter(prefix="/api/applications", tags=["applications"])


@router.get("", response_model=List[ApplicationResponse])
def list_applications(
    status: Optional[str] = Query(None, description="Filter by current status"),
    company: Optional[str] = Query(None, description="Case-insensitive substring match on company"),
    pipeline: TriagePipeline = Depends(get_pipeline),
):
    records = pipeline.applications.list()
    if status:
        records = [r for r in records if r.status.value == status]
    if company:
        needle = company.lower()
        records = [r for r in records if needle in r.company.lower()]
    return [ApplicationResponse.model_validate(r.to_dict()) for r in records]


@router.get("/{record_id}", response_model=ApplicationResponse)
def get_application(record_id: str, pipeline: TriagePipeline = Depends(get_pipeline)):
    return ApplicationResponse.model_validate(pipeline.applications.get(record_id).to_dict())


@router.patch("/{record_id}/status", response_model=ApplicationResponse)
def update_status(record_id: str, body: StatusUpdateRequest, pipeline: TriagePipeline = Depends(get_pipeline)):
    """Direct user edit. Disallowed transitions answer 409."""
    record = pipeline.applications.update_status(record_id, body.status, body.note)
    return ApplicationResponse.model_validate(record.to_dict())


@router.get("/{record_id}/events", response_model=List[TransitionEventResponse])
def transition_events(record_id: str, pipeline: TriagePipeline = Depends(get_pipeline)):
    pipeline.applications.get(record_id)
    return [TransitionEventResponse.model_validate(e.to_dict()) for e in pipeline.repository.list_transition_events(record_id)]


@router.get("/{record_id}/provenance")
def provenance(record_id: str, pipeline: TriagePipeline = Depends(get_pipeline)):
    record = pipeline.applications.get(record_id)
    return {
        "record_id": record.record_id,
        "fields": {name: p.to_dict() for name, p in record.provenance.items()},
        "explanation": format_provenance(record),
    }
