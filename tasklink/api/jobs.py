"""Link job queue endpoints"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from tasklink.config import settings
from tasklink.models import DeadLetter
from tasklink.models.base import get_db
from tasklink.models.dead_letter import DeadLetterReason
from tasklink.services.job_queue import LinkJobPayload, LinkJobQueue

router = APIRouter(prefix="/api/task-link-jobs", tags=["task-link-jobs"])


class LinkJobCreate(BaseModel):
    task_id: str
    summary: str
    # Falls back to TASK_LINK_DEFAULT_PROJECT when omitted
    tracker_project: Optional[str] = None
    task_url: Optional[str] = None
    description: Optional[str] = None
    due_timestamp: Optional[Union[int, str]] = None
    assignee_task_identities: Optional[List[str]] = None
    created_by: Optional[str] = None


class DeadLetterResponse(BaseModel):
    id: int
    msg_id: int
    task_id: Optional[str] = None
    read_count: int
    reason: str
    message: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


@router.post("/")
def enqueue_link_job(job: LinkJobCreate, db: Session = Depends(get_db)):
    """Queue a task for linking to a new tracker issue"""
    data = job.model_dump()
    data["tracker_project"] = data.get("tracker_project") or settings.task_link_default_project
    data["requested_at"] = datetime.now(timezone.utc).isoformat()
    try:
        payload = LinkJobPayload.model_validate(data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    msg_id = LinkJobQueue(db).enqueue(payload)
    return {"msg_id": msg_id, "task_id": payload.task_id}


@router.get("/stats")
def queue_stats(db: Session = Depends(get_db)):
    """Count queued, visible and leased jobs"""
    return LinkJobQueue(db).stats()


@router.post("/drain")
def drain_now(request: Request):
    """Process one batch immediately"""
    worker = getattr(request.app.state, "worker", None)
    if worker is None:
        raise HTTPException(status_code=503, detail="Task link worker is not running")
    stats = worker.run_batch()
    if stats is None:
        raise HTTPException(status_code=409, detail="A batch is already draining")
    return {"status": "success", "stats": stats}


@router.get("/dead-letters", response_model=List[DeadLetterResponse])
def list_dead_letters(
    limit: int = 100,
    reason: Optional[DeadLetterReason] = None,
    db: Session = Depends(get_db),
):
    """List jobs that were dropped without effect"""
    query = db.query(DeadLetter).order_by(DeadLetter.created_at.desc())
    if reason is not None:
        query = query.filter(DeadLetter.reason == reason)
    return query.limit(limit).all()
