"""Link registry: durable task <-> issue pairings"""

import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tasklink.models import TaskLink
from tasklink.models.task_link import TaskStatus, TrackerStatus, utcnow

logger = logging.getLogger(__name__)


class LinkRegistry:
    """Reads and writes TaskLink rows, always keyed on `task_id`"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_task_id(self, task_id: str) -> Optional[TaskLink]:
        """Look up the link for a task"""
        return self.db.query(TaskLink).filter(TaskLink.task_id == task_id).first()

    def get_by_tracker_issue(self, project: str, issue_iid: int) -> Optional[TaskLink]:
        """Look up the link for a tracker issue (secondary index)"""
        return (
            self.db.query(TaskLink)
            .filter(
                TaskLink.tracker_project == project,
                TaskLink.tracker_issue_iid == int(issue_iid),
            )
            .order_by(TaskLink.id.desc())
            .first()
        )

    def list_links(
        self,
        *,
        project: Optional[str] = None,
        task_status: Optional[TaskStatus] = None,
        tracker_status: Optional[TrackerStatus] = None,
        limit: Optional[int] = None,
    ) -> List[TaskLink]:
        """List links, most recently updated first"""
        query = self.db.query(TaskLink).order_by(TaskLink.updated_at.desc())
        if project:
            query = query.filter(TaskLink.tracker_project == project)
        if task_status is not None:
            query = query.filter(TaskLink.task_status == task_status)
        if tracker_status is not None:
            query = query.filter(TaskLink.tracker_status == tracker_status)
        if limit:
            query = query.limit(limit)
        return query.all()

    def save_link(
        self,
        *,
        task_id: str,
        tracker_project: str,
        tracker_issue_iid: int,
        tracker_issue_url: Optional[str] = None,
        task_url: Optional[str] = None,
        created_by: Optional[str] = None,
        assignee_task_identity: Optional[str] = None,
        assignee_tracker_identity: Optional[str] = None,
    ) -> TaskLink:
        """Insert or update the link for `task_id`.

        A new link starts as opened/todo. Updating an existing link keeps its mirrored
        statuses. Raises on database errors other than a lost insert race.
        """
        fields = {
            "tracker_project": tracker_project,
            "tracker_issue_iid": int(tracker_issue_iid),
            "tracker_issue_url": tracker_issue_url,
            "task_url": task_url,
            "created_by": created_by,
            "assignee_task_identity": assignee_task_identity,
            "assignee_tracker_identity": assignee_tracker_identity,
        }

        link = self.get_by_task_id(task_id)
        if link is None:
            link = TaskLink(
                task_id=task_id,
                tracker_status=TrackerStatus.OPENED,
                task_status=TaskStatus.TODO,
                last_synced_at=utcnow(),
                **fields,
            )
            try:
                self.db.add(link)
                self.db.commit()
            except IntegrityError:
                # Another writer inserted the same task_id first; fall through to update.
                self.db.rollback()
                link = self.get_by_task_id(task_id)
                if link is None:
                    raise
            else:
                logger.info(
                    f"Saved link: {task_id} <-> {tracker_project}#{tracker_issue_iid}"
                )
                return link

        for key, value in fields.items():
            # Don't erase optional details we already know.
            if value is None and key not in ("tracker_project", "tracker_issue_iid"):
                continue
            setattr(link, key, value)
        link.last_synced_at = utcnow()
        self.db.commit()
        logger.info(f"Updated link: {task_id} <-> {tracker_project}#{tracker_issue_iid}")
        return link

    def update_tracker_status(
        self, project: str, issue_iid: int, status: TrackerStatus
    ) -> bool:
        """Mirror the tracker issue's open/closed state. Returns False when not linked."""
        rows = (
            self.db.query(TaskLink)
            .filter(
                TaskLink.tracker_project == project,
                TaskLink.tracker_issue_iid == int(issue_iid),
            )
            .all()
        )
        if not rows:
            return False
        now = utcnow()
        for row in rows:
            row.tracker_status = TrackerStatus(status)
            row.last_synced_at = now
        self.db.commit()
        return True

    def update_task_status(self, task_id: str, status: TaskStatus) -> bool:
        """Mirror the task's completion state. Returns False when not linked."""
        link = self.get_by_task_id(task_id)
        if link is None:
            return False
        link.task_status = TaskStatus(status)
        link.last_synced_at = utcnow()
        self.db.commit()
        return True

    def unlink(self, task_id: str) -> bool:
        """Delete the link for a task"""
        link = self.get_by_task_id(task_id)
        if link is None:
            return False
        self.db.delete(link)
        self.db.commit()
        logger.info(f"Unlinked task {task_id}")
        return True
