"""Long-lived external clients and per-session service wiring"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from tasklink.services.glab_cli import GlabCli
from tasklink.services.issue_creator import IssueCreator
from tasklink.services.job_queue import LinkJobQueue
from tasklink.services.link_processor import LinkJobProcessor, WorkerConfig
from tasklink.services.link_registry import LinkRegistry
from tasklink.services.status_sync import StatusMirror
from tasklink.services.task_client import TaskSystemClient
from tasklink.services.user_mapping import UserMappingResolver

logger = logging.getLogger(__name__)


class LinkServices:
    """Builds services bound to a DB session, sharing one set of external clients.

    Every external client gets a timeout no longer than the worker's per-call deadline.
    """

    def __init__(self, settings, config: Optional[WorkerConfig] = None):
        self.settings = settings
        self.config = config or WorkerConfig.from_settings(settings)
        deadline = self.config.call_timeout_seconds

        self.cli = GlabCli(
            settings.glab_bin,
            timeout_s=min(settings.glab_timeout_seconds, deadline),
            gitlab_url=settings.gitlab_url,
            token=settings.gitlab_token,
        )

        self.task_client: Optional[TaskSystemClient] = None
        if settings.task_app_id and settings.task_app_secret:
            self.task_client = TaskSystemClient(
                settings.task_api_base_url,
                settings.task_app_id,
                settings.task_app_secret,
                timeout_s=min(settings.task_api_timeout_seconds, deadline),
            )
        else:
            logger.warning(
                "Task system credentials not set: directory lookups and task backlinks are disabled"
            )

        self._lookup = None

    @property
    def lookup(self):
        """GitLabClient for read-only lookups, or None without a token."""
        if self._lookup is None and self.settings.gitlab_token:
            from tasklink.services.gitlab_client import GitLabClient

            try:
                self._lookup = GitLabClient(
                    self.settings.gitlab_url,
                    self.settings.gitlab_token,
                    timeout_s=self.config.call_timeout_seconds,
                )
            except Exception as e:
                # Lookups are optional; retry the connection on a later batch.
                logger.warning(f"GitLab API client unavailable: {e}")
                return None
        return self._lookup

    def resolver(self, db: Session) -> UserMappingResolver:
        return UserMappingResolver(
            db, self.task_client, email_suffix=self.settings.identity_email_suffix
        )

    def issue_creator(self, db: Session) -> IssueCreator:
        return IssueCreator(
            self.cli,
            self.resolver(db),
            gitlab_url=self.settings.gitlab_url,
            lookup=self.lookup,
        )

    def processor(self, db: Session) -> LinkJobProcessor:
        return LinkJobProcessor(
            db,
            LinkJobQueue(db),
            LinkRegistry(db),
            self.issue_creator(db),
            self.task_client,
            self.config,
        )

    def status_mirror(self, db: Session) -> StatusMirror:
        return StatusMirror(
            LinkRegistry(db),
            creator=self.issue_creator(db),
            task_client=self.task_client,
            lookup=self.lookup,
        )

    def close(self):
        if self.task_client is not None:
            self.task_client.close()
