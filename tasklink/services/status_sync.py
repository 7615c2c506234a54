"""Status mirroring between linked tasks and tracker issues"""

import logging
from typing import Any, Dict, Iterable, Optional

from tasklink.models.task_link import TaskStatus, TrackerStatus
from tasklink.services.issue_creator import TaskDetails, is_completed_timestamp
from tasklink.services.link_registry import LinkRegistry

logger = logging.getLogger(__name__)


class StatusMirror:
    """Narrow open/closed <-> todo/done mirroring; no field-level diffing."""

    def __init__(self, registry: LinkRegistry, creator=None, task_client=None, lookup=None):
        self.registry = registry
        # IssueCreator: close_issue / reopen_issue
        self.creator = creator
        # TaskSystemClient: update_task_completion
        self.task_client = task_client
        # GitLabClient: get_issue_state (reconciliation only)
        self.lookup = lookup

    def on_task_completion_changed(self, task_id: str, completed: bool) -> Dict[str, Any]:
        """Task was completed/uncompleted: close/reopen its issue and mirror both statuses."""
        link = self.registry.get_by_task_id(task_id)
        if link is None:
            logger.info(f"No tracker issue linked to task {task_id}")
            return {"status": "skipped", "message": "No linked issue"}

        project, iid = link.tracker_project, link.tracker_issue_iid
        self.registry.update_task_status(task_id, TaskStatus.DONE if completed else TaskStatus.TODO)

        if self.creator is not None:
            result = (
                self.creator.close_issue(project, iid)
                if completed
                else self.creator.reopen_issue(project, iid)
            )
            if not result.success:
                return {"status": "failed", "message": result.error}

        tracker_status = TrackerStatus.CLOSED if completed else TrackerStatus.OPENED
        self.registry.update_tracker_status(project, iid, tracker_status)
        verb = "Closed" if completed else "Reopened"
        return {"status": "success", "message": f"{verb} issue {project}#{iid}"}

    def on_task_updated(self, task: TaskDetails, changed_fields: Iterable[str]) -> Dict[str, Any]:
        """Task fields changed: push them to the linked issue via glab."""
        link = self.registry.get_by_task_id(task.task_id)
        if link is None:
            logger.info(f"No tracker issue linked to task {task.task_id}")
            return {"status": "skipped", "message": "No linked issue"}
        if self.creator is None:
            return {"status": "skipped", "message": "Issue updates are not configured"}

        changed = set(changed_fields or [])
        result = self.creator.update_issue_from_task(
            link.tracker_issue_iid, task, changed, link.tracker_project
        )
        if not result.success:
            return {"status": "failed", "message": result.error}

        if "completed_at" in changed:
            completed = is_completed_timestamp(task.completed_at)
            self.registry.update_task_status(
                task.task_id, TaskStatus.DONE if completed else TaskStatus.TODO
            )
            self.registry.update_tracker_status(
                link.tracker_project,
                link.tracker_issue_iid,
                TrackerStatus.CLOSED if completed else TrackerStatus.OPENED,
            )
        return {
            "status": "success",
            "message": f"Updated issue {link.tracker_project}#{link.tracker_issue_iid}",
            "commands_run": result.commands_run,
        }

    def on_tracker_state_changed(self, project: str, issue_iid: int, state: str) -> Dict[str, Any]:
        """Issue was closed/reopened: mirror tracker status and complete/reopen the task."""
        status = TrackerStatus(state)
        link = self.registry.get_by_tracker_issue(project, issue_iid)
        if link is None:
            logger.info(f"No task linked to {project}#{issue_iid}")
            return {"status": "skipped", "message": "No linked task"}

        self.registry.update_tracker_status(project, issue_iid, status)

        completed = status == TrackerStatus.CLOSED
        if self.task_client is not None:
            update = self.task_client.update_task_completion(link.task_id, completed)
            if not update.success:
                logger.error(f"Failed to update task {link.task_id}: {update.error}")
                return {"status": "failed", "message": update.error}

        self.registry.update_task_status(link.task_id, TaskStatus.DONE if completed else TaskStatus.TODO)
        return {"status": "success", "message": f"Task {link.task_id} completed={completed}"}

    def reconcile_tracker_statuses(self, *, project: Optional[str] = None, limit: int = 200) -> Dict[str, int]:
        """Poll linked issues' states and mirror any that drifted."""
        stats = {"checked": 0, "updated": 0, "missing": 0, "errors": 0}
        if self.lookup is None:
            logger.info("Tracker reconciliation skipped: no GitLab API token configured")
            return stats

        for link in self.registry.list_links(project=project, limit=limit):
            stats["checked"] += 1
            try:
                state = self.lookup.get_issue_state(link.tracker_project, link.tracker_issue_iid)
            except Exception as e:
                stats["errors"] += 1
                logger.error(
                    f"Failed to read state of {link.tracker_project}#{link.tracker_issue_iid}: {e}"
                )
                continue
            if state is None or state not in {s.value for s in TrackerStatus}:
                stats["missing"] += 1
                continue
            if state == TrackerStatus(link.tracker_status).value:
                continue
            result = self.on_tracker_state_changed(link.tracker_project, link.tracker_issue_iid, state)
            if result["status"] == "success":
                stats["updated"] += 1
            else:
                stats["errors"] += 1

        logger.info(f"Tracker status reconciliation finished: {stats}")
        return stats
