"""GitLab API client wrapper (read-only lookups)"""
import gitlab
import logging
from typing import Any, List, Optional
import time

logger = logging.getLogger(__name__)


class GitLabClient:
    """Wrapper for the GitLab API reads the link engine needs.

    All writes go through the glab CLI; this client only looks things up.
    """

    def __init__(self, url: str, access_token: str, *, timeout_s: Optional[float] = None):
        """Initialize GitLab client"""
        self.url = url
        self.gl = gitlab.Gitlab(url, private_token=access_token, timeout=timeout_s)
        self.gl.auth()

    @staticmethod
    def _should_retry(exc: Exception) -> bool:
        """Best-effort retry predicate for transient GitLab failures."""
        # python-gitlab exceptions often carry an HTTP response code
        rc = getattr(exc, "response_code", None)
        if rc in (429, 500, 502, 503, 504):
            return True
        # If we can't classify, don't retry to avoid hiding real issues.
        return False

    def _with_retries(self, fn, *, max_attempts: int = 3, base_delay_s: float = 0.5):
        """Run callable with small exponential backoff on transient errors."""
        attempt = 1
        while True:
            try:
                return fn()
            except Exception as e:
                if attempt >= max_attempts or not self._should_retry(e):
                    raise
                time.sleep(base_delay_s * (2 ** (attempt - 1)))
                attempt += 1

    def get_project(self, project_id: str):
        """Get project by ID or path"""
        try:
            return self._with_retries(lambda: self.gl.projects.get(project_id))
        except gitlab.exceptions.GitlabGetError as e:
            logger.error(f"Failed to get project {project_id}: {e}")
            raise

    def get_issue(self, project_id: str, issue_iid: int) -> Any:
        """Get a specific issue by IID"""
        try:
            project = self.get_project(project_id)
            return self._with_retries(lambda: project.issues.get(issue_iid))
        except gitlab.exceptions.GitlabGetError as e:
            logger.error(f"Failed to get issue {issue_iid} from project {project_id}: {e}")
            raise

    def get_issue_state(self, project_id: str, issue_iid: int) -> Optional[str]:
        """Return "opened"/"closed", or None when the issue is gone or inaccessible."""
        try:
            issue = self.get_issue(project_id, issue_iid)
        except gitlab.exceptions.GitlabGetError as e:
            if getattr(e, "response_code", None) in (403, 404):
                return None
            raise
        return getattr(issue, "state", None)

    def find_issues_mentioning(self, project_id: str, text: str) -> List[Any]:
        """Find issues whose description contains `text` (newest first)."""
        try:
            project = self.get_project(project_id)
            params = {
                "search": text,
                "in": "description",
                "state": "all",
                "order_by": "created_at",
                "sort": "desc",
                "per_page": 20,
            }
            issues = self._with_retries(lambda: project.issues.list(get_all=False, **params))
            # GitLab search is tokenized; confirm the exact text is really there.
            return [i for i in issues if text in (getattr(i, "description", None) or "")]
        except Exception as e:
            logger.error(f"Failed to search issues in project {project_id}: {e}")
            raise
