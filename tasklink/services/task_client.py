"""Task system API client (task list + identity directory)"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class TaskSystemError(Exception):
    """Task system API call failed"""

    def __init__(self, message: str, *, status_code: Optional[int] = None, code: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


@dataclass
class DirectoryUser:
    """What the identity directory knows about a user"""

    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None


@dataclass
class TaskApiResult:
    """Outcome of a task mutation"""

    success: bool
    error: Optional[str] = None


class TaskSystemClient:
    """Wrapper for the task list and contact directory APIs"""

    _TOKEN_REFRESH_MARGIN_S = 60

    def __init__(
        self,
        base_url: str,
        app_id: Optional[str],
        app_secret: Optional[str],
        *,
        timeout_s: float = 15.0,
        http: Optional[httpx.Client] = None,
    ):
        """Initialize client. No network traffic happens until the first call."""
        self.base_url = (base_url or "").rstrip("/")
        self.app_id = app_id
        self.app_secret = app_secret
        self._http = http or httpx.Client(base_url=self.base_url, timeout=httpx.Timeout(timeout_s))
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    @property
    def configured(self) -> bool:
        return bool(self.app_id and self.app_secret)

    def close(self):
        self._http.close()

    @staticmethod
    def _should_retry(exc: Exception) -> bool:
        """Retry predicate for transient API failures."""
        if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
            return True
        return isinstance(exc, TaskSystemError) and exc.status_code in (429, 500, 502, 503, 504)

    def _with_retries(self, fn, *, max_attempts: int = 2, base_delay_s: float = 0.5):
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

    @staticmethod
    def _check(response: httpx.Response) -> Dict[str, Any]:
        """Decode a response; the API reports failures as a non-zero `code`."""
        if response.status_code >= 400:
            raise TaskSystemError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise TaskSystemError(f"Invalid JSON response: {e}", status_code=response.status_code)
        if not isinstance(data, dict):
            raise TaskSystemError(
                f"Unexpected response body: {type(data).__name__}", status_code=response.status_code
            )
        code = data.get("code")
        if code not in (0, None):
            raise TaskSystemError(
                f"API error {code}: {data.get('msg')}", status_code=response.status_code, code=code
            )
        return data

    def _tenant_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        if not self.configured:
            raise TaskSystemError("Task system credentials are not configured")

        response = self._http.post(
            "/auth/v3/tenant_access_token/internal",
            json={"app_id": self.app_id, "app_secret": self.app_secret},
        )
        data = self._check(response)
        token = data.get("tenant_access_token")
        if not token:
            raise TaskSystemError("Token response did not include tenant_access_token")
        expires_in = int(data.get("expire") or 0)
        self._token = token
        self._token_expires_at = time.monotonic() + max(0, expires_in - self._TOKEN_REFRESH_MARGIN_S)
        return token

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        def _call():
            headers = {"Authorization": f"Bearer {self._tenant_token()}"}
            return self._check(self._http.request(method, path, headers=headers, **kwargs))

        return self._with_retries(_call)

    def get_user(self, user_id: str) -> Optional[DirectoryUser]:
        """Get a user from the directory. Returns None if the directory has no such user.

        Raises TaskSystemError (or httpx errors) when the lookup itself fails.
        """
        try:
            data = self._request(
                "GET", f"/contact/v3/users/{user_id}", params={"user_id_type": "open_id"}
            )
        except TaskSystemError as e:
            if e.status_code == 404:
                return None
            raise

        body = data.get("data")
        user = body.get("user") if isinstance(body, dict) else None
        if not isinstance(user, dict) or not user:
            return None
        return DirectoryUser(
            user_id=user_id,
            # Work email first; personal email only as a fallback.
            email=user.get("enterprise_email") or user.get("email") or None,
            display_name=user.get("name") or None,
        )

    def _patch_task(self, task_id: str, task: Dict[str, Any], update_fields) -> TaskApiResult:
        try:
            self._request(
                "PATCH",
                f"/task/v2/tasks/{task_id}",
                params={"user_id_type": "open_id"},
                json={"task": task, "update_fields": list(update_fields)},
            )
            return TaskApiResult(success=True)
        except (TaskSystemError, httpx.HTTPError) as e:
            logger.error(f"Failed to update task {task_id} ({', '.join(update_fields)}): {e}")
            return TaskApiResult(success=False, error=str(e))

    def update_task_description(self, task_id: str, description: str) -> TaskApiResult:
        """Replace a task's description"""
        result = self._patch_task(task_id, {"description": description}, ["description"])
        if result.success:
            logger.info(f"Updated task description: {task_id}")
        return result

    def update_task_completion(self, task_id: str, completed: bool) -> TaskApiResult:
        """Complete or reopen a task"""
        completed_at = str(int(time.time() * 1000)) if completed else "0"
        result = self._patch_task(task_id, {"completed_at": completed_at}, ["completed_at"])
        if result.success:
            logger.info(f"Updated task {task_id} status: completed={completed}")
        return result
