"""Durable at-least-once queue of task link jobs"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, field_validator
from sqlalchemy import func, update
from sqlalchemy.orm import Session

from tasklink.models import LinkJob
from tasklink.models.task_link import utcnow

logger = logging.getLogger(__name__)


class LinkJobPayload(BaseModel):
    """Body of a "link this task" job"""

    task_id: str
    summary: str
    tracker_project: str
    task_url: Optional[str] = None
    description: Optional[str] = None
    # Task-system due timestamp (unix seconds or milliseconds)
    due_timestamp: Optional[str] = None
    assignee_task_identities: Optional[List[str]] = None
    created_by: Optional[str] = None
    requested_at: Optional[str] = None

    @field_validator("task_id", "summary", "tracker_project")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("due_timestamp", "requested_at", mode="before")
    @classmethod
    def _stringify_number(cls, value: Any) -> Any:
        # Producers send these as JSON numbers or strings.
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(int(value))
        return value

    @field_validator("assignee_task_identities", mode="before")
    @classmethod
    def _drop_empty_identities(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [v for v in value if isinstance(v, str) and v.strip()]
        return value


@dataclass
class QueuedJob:
    """A leased queue message"""

    msg_id: int
    read_count: int
    enqueued_at: Optional[datetime]
    payload: Any


class LinkJobQueue:
    """Queue primitives backed by the `task_link_jobs` table.

    Messages stay until acknowledged. A dequeued message is hidden for the visibility
    timeout and becomes deliverable again afterwards with its read count incremented.
    Callers must be idempotent: a message can be delivered again if acknowledge fails.
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self._clock = clock

    def enqueue(self, payload: Union[LinkJobPayload, Dict[str, Any]]) -> int:
        """Add a job and return its message id"""
        if isinstance(payload, LinkJobPayload):
            message = payload.model_dump(mode="json")
        else:
            message = dict(payload)
        now = self._clock()
        row = LinkJob(message=message, read_ct=0, enqueued_at=now, visible_at=now)
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        logger.info(f"Enqueued link job {row.msg_id} for task {message.get('task_id')}")
        return row.msg_id

    def dequeue(self, batch_size: int = 5, visibility_timeout: int = 60) -> List[QueuedJob]:
        """Lease up to `batch_size` visible messages for `visibility_timeout` seconds"""
        if batch_size <= 0:
            return []
        now = self._clock()
        lease_until = now + timedelta(seconds=visibility_timeout)

        candidates = (
            self.db.query(LinkJob)
            .filter(LinkJob.visible_at <= now)
            .order_by(LinkJob.msg_id)
            .limit(batch_size)
            .all()
        )

        leased: List[QueuedJob] = []
        for row in candidates:
            # Conditional claim: only one consumer can move visible_at forward from the
            # value it read, so concurrent processes never lease the same message.
            result = self.db.execute(
                update(LinkJob)
                .where(LinkJob.msg_id == row.msg_id, LinkJob.visible_at == row.visible_at)
                .values(visible_at=lease_until, read_ct=LinkJob.read_ct + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                continue
            leased.append(
                QueuedJob(
                    msg_id=row.msg_id,
                    read_count=(row.read_ct or 0) + 1,
                    enqueued_at=row.enqueued_at,
                    payload=dict(row.message) if isinstance(row.message, dict) else row.message,
                )
            )
        self.db.commit()
        # Rows in the identity map still hold the pre-claim values.
        self.db.expire_all()

        if leased:
            logger.debug(f"Leased {len(leased)} link job(s) for {visibility_timeout}s")
        return leased

    def acknowledge(self, msg_id: int) -> bool:
        """Delete a message. Returns False when it no longer exists."""
        result = self.db.execute(
            LinkJob.__table__.delete().where(LinkJob.msg_id == msg_id)
        )
        self.db.commit()
        return result.rowcount == 1

    def stats(self) -> Dict[str, int]:
        """Count total, visible and leased messages"""
        now = self._clock()
        total = self.db.query(func.count(LinkJob.msg_id)).scalar() or 0
        visible = (
            self.db.query(func.count(LinkJob.msg_id)).filter(LinkJob.visible_at <= now).scalar()
            or 0
        )
        return {"total": total, "visible": visible, "leased": total - visible}
