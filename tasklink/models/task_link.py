"""Task link model"""
import enum
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum, Index, Integer, String

from tasklink.models.base import Base


def utcnow() -> datetime:
    """UTC 'now' as tz-naive datetime (consistent across SQLite and Postgres)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TrackerStatus(str, enum.Enum):
    """Issue state in the tracker"""
    OPENED = "opened"
    CLOSED = "closed"


class TaskStatus(str, enum.Enum):
    """Task state in the task system"""
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class TaskLink(Base):
    """One task-system item paired with one tracker issue"""

    __tablename__ = "task_links"
    __table_args__ = (
        # task_id is the natural key. The tracker side is only a lookup index:
        # an issue may be re-linked after an explicit unlink.
        Index("uq_task_links_task_id", "task_id", unique=True),
        Index("ix_task_links_tracker_issue", "tracker_project", "tracker_issue_iid"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Tracker issue
    tracker_project = Column(String, nullable=False)  # e.g. "group/project"
    tracker_issue_iid = Column(Integer, nullable=False)
    tracker_issue_url = Column(String, nullable=True)  # derived from project + iid

    # Task
    task_id = Column(String, nullable=False)
    task_url = Column(String, nullable=True)

    # People
    created_by = Column(String, nullable=True)
    assignee_task_identity = Column(String, nullable=True)
    assignee_tracker_identity = Column(String, nullable=True)

    # Mirrored state
    tracker_status = Column(Enum(TrackerStatus), nullable=False, default=TrackerStatus.OPENED)
    task_status = Column(Enum(TaskStatus), nullable=False, default=TaskStatus.TODO)
    last_synced_at = Column(DateTime, default=utcnow)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<TaskLink({self.task_id} <-> {self.tracker_project}#{self.tracker_issue_iid})>"
