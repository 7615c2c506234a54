"""Per-job processing for the task link worker"""

import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tasklink.models import DeadLetter
from tasklink.models.dead_letter import DeadLetterReason
from tasklink.services.issue_creator import (
    CreateOutcome,
    IssueCreateResult,
    IssueCreator,
    TaskDetails,
    build_issue_url,
)
from tasklink.services.job_queue import LinkJobPayload, LinkJobQueue, QueuedJob
from tasklink.services.link_registry import LinkRegistry

logger = logging.getLogger(__name__)

BACKLINK_LABEL = "🔗 GitLab Issue:"


@dataclass
class WorkerConfig:
    """Worker knobs (see Settings.task_link_worker_*)"""

    interval_seconds: int = 30
    batch_size: int = 5
    visibility_timeout_seconds: int = 120
    max_attempts: int = 8
    deadline_margin_seconds: int = 30

    @property
    def call_timeout_seconds(self) -> int:
        """Deadline for any single external call, safely inside the job's lease."""
        return max(1, self.visibility_timeout_seconds - self.deadline_margin_seconds)

    @classmethod
    def from_settings(cls, settings) -> "WorkerConfig":
        return cls(
            interval_seconds=settings.task_link_worker_interval_seconds,
            batch_size=settings.task_link_worker_batch_size,
            visibility_timeout_seconds=settings.task_link_worker_visibility_timeout_seconds,
            max_attempts=settings.task_link_worker_max_attempts,
            deadline_margin_seconds=settings.task_link_worker_deadline_margin_seconds,
        )


class JobOutcome(str, enum.Enum):
    """What happened to one job"""
    LINKED = "linked"
    ALREADY_LINKED = "already_linked"
    DROPPED = "dropped"
    RETRY = "retry"

    @property
    def acknowledged(self) -> bool:
        return self != JobOutcome.RETRY


def build_linked_description(description: Optional[str], issue_url: str) -> str:
    """Task description with the issue backlink appended; unchanged if already linked."""
    if not description:
        return f"{BACKLINK_LABEL} {issue_url}"
    if issue_url in description:
        return description
    return f"{description}\n\n{BACKLINK_LABEL} {issue_url}"


class LinkJobProcessor:
    """Turns one leased LinkJob into an issue, a registry row and a task backlink.

    Jobs that cannot succeed are acknowledged and recorded as dead letters; transient
    failures leave the job leased so the queue redelivers it after the timeout.
    """

    def __init__(
        self,
        db: Session,
        queue: LinkJobQueue,
        registry: LinkRegistry,
        creator: IssueCreator,
        task_client,
        config: WorkerConfig,
        *,
        clock=time.monotonic,
    ):
        self.db = db
        self.queue = queue
        self.registry = registry
        self.creator = creator
        # TaskSystemClient-like: update_task_description(task_id, description)
        self.task_client = task_client
        self.config = config
        self._clock = clock

    def process(self, job: QueuedJob, leased_at: Optional[float] = None) -> JobOutcome:
        """Process one job; see JobOutcome for the possible results."""
        if job.read_count >= self.config.max_attempts:
            logger.warning(f"Dropping job {job.msg_id} after {job.read_count} attempts")
            self._dead_letter(
                job,
                DeadLetterReason.ATTEMPTS_EXCEEDED,
                f"read {job.read_count} times (max {self.config.max_attempts})",
            )
            self._ack(job)
            return JobOutcome.DROPPED

        try:
            payload = LinkJobPayload.model_validate(job.payload)
        except ValidationError as e:
            logger.warning(f"Invalid payload for job {job.msg_id}, acking: {e.errors()}")
            self._dead_letter(job, DeadLetterReason.MALFORMED, str(e))
            self._ack(job)
            return JobOutcome.DROPPED

        existing = self.registry.get_by_task_id(payload.task_id)
        if existing is not None:
            logger.info(f"Link already exists for task {payload.task_id}, acking")
            self._ack(job)
            return JobOutcome.ALREADY_LINKED

        task = TaskDetails(
            task_id=payload.task_id,
            summary=payload.summary,
            description=payload.description,
            due_timestamp=payload.due_timestamp,
            assignee_task_identities=list(payload.assignee_task_identities or []),
            url=payload.task_url,
        )

        result = None
        if job.read_count > 1:
            # A previous delivery may have created the issue and died before linking it.
            result = self._recover_created_issue(payload, task)

        if result is None:
            if self._lease_expiring(leased_at):
                logger.warning(
                    f"Lease for job {job.msg_id} is about to expire; leaving it for redelivery"
                )
                return JobOutcome.RETRY

            result = self.creator.create_issue_from_task(task, payload.task_url, payload.tracker_project)

            if result.outcome == CreateOutcome.FAILED:
                logger.warning(f"Issue create failed for task {payload.task_id}: {result.error}")
                return JobOutcome.RETRY

            if result.outcome == CreateOutcome.AMBIGUOUS:
                recovered = self._recover_created_issue(payload, task)
                if recovered is None:
                    # Retrying could create a second issue; stop and make it visible instead.
                    logger.error(
                        f"Issue create for task {payload.task_id} is unconfirmed "
                        f"(job {job.msg_id}); needs manual check: {result.error}"
                    )
                    self._dead_letter(job, DeadLetterReason.AMBIGUOUS_CREATE, result.error, payload)
                    self._ack(job)
                    return JobOutcome.DROPPED
                result = recovered

        self.registry.save_link(
            task_id=payload.task_id,
            tracker_project=payload.tracker_project,
            tracker_issue_iid=result.issue_iid,
            tracker_issue_url=result.issue_url,
            task_url=payload.task_url,
            created_by=payload.created_by,
            assignee_task_identity=result.assignee_task_identity,
            assignee_tracker_identity=result.assignee_tracker_identity,
        )

        self._patch_backlink(payload, result.issue_url)

        self._ack(job)
        logger.info(f"Linked task {payload.task_id} -> {result.issue_url}")
        return JobOutcome.LINKED

    def _recover_created_issue(
        self, payload: LinkJobPayload, task: TaskDetails
    ) -> Optional[IssueCreateResult]:
        """Look for an issue that already links back to this task."""
        try:
            issue_iid = self.creator.find_issue_by_task_url(payload.tracker_project, payload.task_url)
        except Exception as e:
            logger.warning(f"Tracker lookup for task {payload.task_id} failed: {e}")
            return None
        if issue_iid is None:
            return None

        logger.info(f"Found existing issue #{issue_iid} for task {payload.task_id}")
        identity, username = self.creator.resolve_assignee(task.assignee_task_identities)
        return IssueCreateResult(
            outcome=CreateOutcome.CREATED,
            issue_iid=issue_iid,
            issue_url=build_issue_url(self.creator.gitlab_url, payload.tracker_project, issue_iid),
            assignee_task_identity=identity,
            assignee_tracker_identity=username,
        )

    def _patch_backlink(self, payload: LinkJobPayload, issue_url: str):
        """Best-effort: the issue exists either way and must not be recreated."""
        if self.task_client is None:
            return
        description = build_linked_description(payload.description, issue_url)
        try:
            update = self.task_client.update_task_description(payload.task_id, description)
        except Exception as e:
            logger.warning(f"Failed to update task description for {payload.task_id}: {e}")
            return
        if not update.success:
            logger.warning(f"Failed to update task description for {payload.task_id}: {update.error}")

    def _lease_expiring(self, leased_at: Optional[float]) -> bool:
        if leased_at is None:
            return False
        return (self._clock() - leased_at) >= self.config.call_timeout_seconds

    def _ack(self, job: QueuedJob):
        if not self.queue.acknowledge(job.msg_id):
            logger.warning(f"Job {job.msg_id} was already gone when acknowledged")

    def _dead_letter(
        self,
        job: QueuedJob,
        reason: DeadLetterReason,
        message: Optional[str],
        payload: Optional[LinkJobPayload] = None,
    ):
        if payload is not None:
            raw: Dict[str, Any] = payload.model_dump(mode="json")
        elif isinstance(job.payload, dict):
            raw = dict(job.payload)
        else:
            raw = {"raw": job.payload}
        task_id = raw.get("task_id") if isinstance(raw.get("task_id"), str) else None
        try:
            self.db.add(
                DeadLetter(
                    msg_id=job.msg_id,
                    task_id=task_id,
                    read_count=job.read_count,
                    reason=reason,
                    message=(message or "")[:2000],
                    payload=raw,
                )
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to record dead letter for job {job.msg_id}: {e}")
