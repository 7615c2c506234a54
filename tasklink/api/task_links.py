"""Task link registry endpoints"""
from datetime import datetime
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from tasklink.api.deps import get_services
from tasklink.models.base import get_db
from tasklink.models.task_link import TaskStatus, TrackerStatus
from tasklink.services.issue_creator import UPDATABLE_FIELDS, TaskDetails
from tasklink.services.link_registry import LinkRegistry
from tasklink.services.runtime import LinkServices

router = APIRouter(prefix="/api/task-links", tags=["task-links"])


class TaskLinkResponse(BaseModel):
    id: int
    task_id: str
    task_url: Optional[str] = None
    tracker_project: str
    tracker_issue_iid: int
    tracker_issue_url: Optional[str] = None
    tracker_status: TrackerStatus
    task_status: TaskStatus
    created_by: Optional[str] = None
    assignee_task_identity: Optional[str] = None
    assignee_tracker_identity: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TaskStatusUpdate(BaseModel):
    status: TaskStatus


class TrackerStatusUpdate(BaseModel):
    project: str
    issue_iid: int
    status: TrackerStatus


class TaskCompletionEvent(BaseModel):
    completed: bool


class TaskUpdatedEvent(BaseModel):
    changed_fields: List[str]
    summary: Optional[str] = None
    description: Optional[str] = None
    due_timestamp: Optional[Union[int, str]] = None
    completed_at: Optional[Union[int, str]] = None


@router.get("/", response_model=List[TaskLinkResponse])
def list_task_links(
    project: Optional[str] = None,
    task_status: Optional[TaskStatus] = None,
    tracker_status: Optional[TrackerStatus] = None,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    """List task links"""
    return LinkRegistry(db).list_links(
        project=project, task_status=task_status, tracker_status=tracker_status, limit=limit
    )


@router.post("/tracker-status")
def update_tracker_status(update: TrackerStatusUpdate, db: Session = Depends(get_db)):
    """Record a tracker issue's open/closed state"""
    if not LinkRegistry(db).update_tracker_status(update.project, update.issue_iid, update.status):
        raise HTTPException(status_code=404, detail="Task link not found")
    return {"status": "success"}


@router.post("/tracker-events")
def tracker_state_changed(
    update: TrackerStatusUpdate,
    db: Session = Depends(get_db),
    services: LinkServices = Depends(get_services),
):
    """Issue closed/reopened: mirror it and complete/reopen the linked task"""
    result = services.status_mirror(db).on_tracker_state_changed(
        update.project, update.issue_iid, update.status.value
    )
    if result["status"] == "failed":
        raise HTTPException(status_code=502, detail=result["message"])
    return result


@router.post("/reconcile")
def reconcile_tracker_statuses(
    project: Optional[str] = None,
    db: Session = Depends(get_db),
    services: LinkServices = Depends(get_services),
):
    """Re-read issue states from the tracker and mirror any drift"""
    return services.status_mirror(db).reconcile_tracker_statuses(project=project)


@router.get("/{task_id}", response_model=TaskLinkResponse)
def get_task_link(task_id: str, db: Session = Depends(get_db)):
    """Get the link for a task"""
    link = LinkRegistry(db).get_by_task_id(task_id)
    if not link:
        raise HTTPException(status_code=404, detail="Task link not found")
    return link


@router.post("/{task_id}/task-status")
def update_task_status(task_id: str, update: TaskStatusUpdate, db: Session = Depends(get_db)):
    """Record a task's status"""
    if not LinkRegistry(db).update_task_status(task_id, update.status):
        raise HTTPException(status_code=404, detail="Task link not found")
    return {"status": "success"}


@router.post("/{task_id}/completion")
def task_completion_changed(
    task_id: str,
    event: TaskCompletionEvent,
    db: Session = Depends(get_db),
    services: LinkServices = Depends(get_services),
):
    """Task completed/uncompleted: close/reopen the linked issue"""
    result = services.status_mirror(db).on_task_completion_changed(task_id, event.completed)
    if result["status"] == "skipped":
        raise HTTPException(status_code=404, detail=result["message"])
    if result["status"] == "failed":
        raise HTTPException(status_code=502, detail=result["message"])
    return result


@router.post("/{task_id}/task-updated")
def task_updated(
    task_id: str,
    event: TaskUpdatedEvent,
    db: Session = Depends(get_db),
    services: LinkServices = Depends(get_services),
):
    """Task fields changed: push title/description/due date/completion to the issue"""
    changed = [f for f in event.changed_fields if f in UPDATABLE_FIELDS]
    if "summary" in changed and not (event.summary or "").strip():
        raise HTTPException(status_code=400, detail="summary is required when it changed")

    task = TaskDetails(
        task_id=task_id,
        summary=event.summary or "",
        description=event.description,
        due_timestamp=None if event.due_timestamp is None else str(event.due_timestamp),
        completed_at=None if event.completed_at is None else str(event.completed_at),
    )
    result = services.status_mirror(db).on_task_updated(task, changed)
    if result["status"] == "skipped":
        raise HTTPException(status_code=404, detail=result["message"])
    if result["status"] == "failed":
        raise HTTPException(status_code=502, detail=result["message"])
    return result


@router.delete("/{task_id}")
def unlink_task(task_id: str, db: Session = Depends(get_db)):
    """Delete a task link"""
    if not LinkRegistry(db).unlink(task_id):
        raise HTTPException(status_code=404, detail="Task link not found")
    return {"message": "Task link deleted successfully"}
