"""Batch runs: submit emails for triage, read the last run summary."""
from typing import Optional

from celery.result import AsyncResult
from fastapi import APIRouter, Depends, HTTPException

from ..celery_app import celery_app
from ..dependencies import get_adapter, get_pipeline, get_repository
from ..escalation import EscalationAdapter
from ..pipeline import TriagePipeline
from ..repository import SqlAlchemyRepository
from ..schemas import BatchRequest, RunQueuedResponse, RunSummaryResponse
from ..tasks import process_email_batch

router = APIRouter(prefix="/api/runs", tags=["runs"])


@router.post("", response_model=RunSummaryResponse)
def run_batch(body: BatchRequest, pipeline: TriagePipeline = Depends(get_pipeline)):
    """Triage a batch in-request and return the per-email outcomes."""
    summary = pipeline.run_batch([e.to_raw() for e in body.emails])
    return RunSummaryResponse.model_validate(summary.to_dict())


@router.post("/async", response_model=RunQueuedResponse)
def run_batch_async(body: BatchRequest):
    """Hand the batch to the Celery worker."""
    task = process_email_batch.delay([e.model_dump(mode="json") for e in body.emails])
    return RunQueuedResponse(task_id=task.id, message=f"Queued {len(body.emails)} email(s) for triage")


@router.get("/last", response_model=RunSummaryResponse)
def last_run(repository: SqlAlchemyRepository = Depends(get_repository)):
    summary = repository.last_run_summary()
    if summary is None:
        raise HTTPException(status_code=404, detail="No run has completed yet")
    return RunSummaryResponse.model_validate(summary.to_dict())


@router.get("/usage")
def escalation_usage(adapter: Optional[EscalationAdapter] = Depends(get_adapter)):
    """Advisory AI usage counters for this process."""
    if adapter is None:
        return {"enabled": False}
    return {"enabled": True, **adapter.usage.snapshot()}


@router.get("/tasks/{task_id}")
def task_status(task_id: str):
    """State of a batch handed to the worker; the summary once it has finished."""
    result = AsyncResult(task_id, app=celery_app)
    payload = {"task_id": task_id, "state": result.state}
    if result.successful():
        payload["summary"] = result.result
    elif result.failed():
        payload["error"] = str(result.result)
    return payload
