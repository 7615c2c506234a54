"""Create and update tracker issues from task fields via the glab CLI"""

import enum
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from tasklink.services.glab_cli import GlabCliError

logger = logging.getLogger(__name__)

_ISSUE_IID_RE = re.compile(r"#(\d+)")

# Unix timestamps past this are milliseconds (year 5138 in seconds).
_MILLISECONDS_THRESHOLD = 10**11

UPDATABLE_FIELDS = ("summary", "description", "due", "completed_at")


@dataclass
class TaskDetails:
    """The task fields the tracker issue is built from"""

    task_id: str
    summary: str
    description: Optional[str] = None
    due_timestamp: Optional[str] = None
    assignee_task_identities: List[str] = field(default_factory=list)
    url: Optional[str] = None
    completed_at: Optional[str] = None


class CreateOutcome(str, enum.Enum):
    """What is known about a create attempt"""
    CREATED = "created"
    # The CLI may have created the issue but we could not confirm which one.
    AMBIGUOUS = "ambiguous"
    FAILED = "failed"


@dataclass
class IssueCreateResult:
    outcome: CreateOutcome
    issue_iid: Optional[int] = None
    issue_url: Optional[str] = None
    assignee_task_identity: Optional[str] = None
    assignee_tracker_identity: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome == CreateOutcome.CREATED


@dataclass
class IssueUpdateResult:
    success: bool
    commands_run: int = 0
    error: Optional[str] = None


def format_due_date(timestamp) -> Optional[str]:
    """Convert a unix timestamp (seconds or milliseconds) to a UTC YYYY-MM-DD date."""
    if timestamp in (None, "", "0", 0):
        return None
    try:
        ts = int(str(timestamp).strip())
    except ValueError:
        logger.warning(f"Ignoring unparsable due timestamp: {timestamp!r}")
        return None
    if ts >= _MILLISECONDS_THRESHOLD:
        ts = ts // 1000
    return datetime.fromtimestamp(ts, tz=timezone.utc).date().isoformat()


def build_issue_url(gitlab_url: str, project: str, issue_iid: int) -> str:
    """Canonical issue URL, derived rather than fetched"""
    return f"{(gitlab_url or '').rstrip('/')}/{project.strip('/')}/-/issues/{int(issue_iid)}"


def parse_issue_iid(output: str) -> Optional[int]:
    """Find the issue number in glab's human-readable output ("#123 ...")."""
    m = _ISSUE_IID_RE.search(output or "")
    return int(m.group(1)) if m else None


def task_backlink(summary: str, task_url: str) -> str:
    return f"🔗 **Task**: [{summary}]({task_url})"


def build_issue_description(task: TaskDetails, task_url: Optional[str] = None) -> str:
    """Task description with a backlink to the task appended once"""
    desc = task.description or ""
    url = task_url or task.url
    if not url:
        return desc
    # Already carries a link to this task (e.g. re-created from a copied description).
    if f"]({url})" in desc:
        return desc
    backlink = f"---\n{task_backlink(task.summary, url)}"
    return f"{desc}\n\n{backlink}" if desc else backlink


def is_completed_timestamp(value: Optional[str]) -> bool:
    return value not in (None, "", "0", 0)


class IssueCreator:
    """Builds tracker issues from tasks; every method reports a result object."""

    def __init__(self, cli, resolver=None, *, gitlab_url: str, lookup=None):
        self.cli = cli
        # UserMappingResolver-like: resolve(identity) -> username | None
        self.resolver = resolver
        self.gitlab_url = gitlab_url
        # Optional GitLabClient used for read-only recovery lookups
        self.lookup = lookup

    def resolve_assignee(self, identities: Iterable[str]) -> tuple:
        """Return (task identity, tracker username) for the first assignee."""
        for identity in identities or []:
            if not identity:
                continue
            username = self.resolver.resolve(identity) if self.resolver else None
            if not username:
                logger.warning(f"No tracker user for assignee '{identity}', creating unassigned")
            return identity, username
        return None, None

    def create_issue_from_task(
        self, task: TaskDetails, task_url: Optional[str], project: str
    ) -> IssueCreateResult:
        """Create an issue in `project` for `task`"""
        assignee_identity, assignee = self.resolve_assignee(task.assignee_task_identities)
        description = build_issue_description(task, task_url)
        due_date = format_due_date(task.due_timestamp)

        args = ["issue", "create", "-t", task.summary, "-d", description, "-R", project]
        if assignee:
            args += ["--assignee", assignee]
        if due_date:
            args += ["--due-date", due_date]

        def _result(outcome: CreateOutcome, **kwargs) -> IssueCreateResult:
            return IssueCreateResult(
                outcome=outcome,
                assignee_task_identity=assignee_identity,
                assignee_tracker_identity=assignee,
                **kwargs,
            )

        try:
            output = self.cli.run(args)
        except GlabCliError as e:
            if e.timed_out:
                logger.error(f"Issue create for task {task.task_id} timed out; outcome unknown")
                return _result(CreateOutcome.AMBIGUOUS, error=str(e))
            logger.error(f"Error creating issue for task {task.task_id}: {e}")
            return _result(CreateOutcome.FAILED, error=str(e))

        issue_iid = parse_issue_iid(output.stdout)
        if issue_iid is None:
            logger.warning(f"Could not parse issue IID from glab output: {output.stdout!r}")
            return _result(
                CreateOutcome.AMBIGUOUS,
                error=f"Failed to parse issue IID from glab output: {output.stdout.strip()[:200]}",
            )

        issue_url = build_issue_url(self.gitlab_url, project, issue_iid)
        logger.info(f"Created issue #{issue_iid} for task {task.task_id}: {issue_url}")
        return _result(CreateOutcome.CREATED, issue_iid=issue_iid, issue_url=issue_url)

    def find_issue_by_task_url(self, project: str, task_url: Optional[str]) -> Optional[int]:
        """Find an existing issue whose description links back to `task_url`.

        Returns None when no lookup client is configured or nothing matches.
        """
        if self.lookup is None or not task_url:
            return None
        issues = self.lookup.find_issues_mentioning(project, task_url)
        marker = f"]({task_url})"
        for issue in issues:
            if marker in (getattr(issue, "description", None) or ""):
                return int(issue.iid)
        return None

    def update_issue_from_task(
        self,
        issue_iid: int,
        task: TaskDetails,
        changed_fields: Iterable[str],
        project: str,
    ) -> IssueUpdateResult:
        """Push changed task fields to the issue; completion toggles close/reopen."""
        changed = set(changed_fields or [])
        unknown = changed - set(UPDATABLE_FIELDS)
        if unknown:
            logger.debug(f"Ignoring non-synced fields for issue #{issue_iid}: {sorted(unknown)}")

        args: List[str] = []
        if "summary" in changed:
            args += ["-t", task.summary]
        if "description" in changed:
            args += ["-d", task.description or ""]
        if "due" in changed:
            due_date = format_due_date(task.due_timestamp)
            if due_date:
                args += ["--due-date", due_date]

        commands = 0
        try:
            if args:
                self.cli.run(["issue", "update", str(int(issue_iid)), *args, "-R", project])
                commands += 1

            if "completed_at" in changed:
                verb = "close" if is_completed_timestamp(task.completed_at) else "reopen"
                self.cli.run(["issue", verb, str(int(issue_iid)), "-R", project])
                commands += 1
        except GlabCliError as e:
            logger.error(f"Error updating issue #{issue_iid} in {project}: {e}")
            return IssueUpdateResult(success=False, commands_run=commands, error=str(e))

        if commands:
            logger.info(f"Updated issue #{issue_iid} in {project}")
        return IssueUpdateResult(success=True, commands_run=commands)

    def close_issue(self, project: str, issue_iid: int) -> IssueUpdateResult:
        return self._set_state("close", project, issue_iid)

    def reopen_issue(self, project: str, issue_iid: int) -> IssueUpdateResult:
        return self._set_state("reopen", project, issue_iid)

    def _set_state(self, verb: str, project: str, issue_iid: int) -> IssueUpdateResult:
        try:
            self.cli.run(["issue", verb, str(int(issue_iid)), "-R", project])
        except GlabCliError as e:
            logger.error(f"glab issue {verb} failed for {project}#{issue_iid}: {e}")
            return IssueUpdateResult(success=False, error=str(e))
        logger.info(f"Issue {project}#{issue_iid}: {verb} done")
        return IssueUpdateResult(success=True, commands_run=1)
