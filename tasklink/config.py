"""Application configuration"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Database
    database_url: str = "sqlite:///./tasklink.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Optional HTTP Basic auth for every route except /health.
    auth_enabled: bool = False
    auth_username: str | None = None
    auth_password: str | None = None

    # Logging
    log_level: str = "INFO"

    # Link worker
    task_link_worker_enabled: bool = True
    task_link_worker_interval_seconds: int = 30
    task_link_worker_batch_size: int = 5
    task_link_worker_visibility_timeout_seconds: int = 120
    task_link_worker_max_attempts: int = 8
    # Every external call must finish this many seconds before the job's lease expires.
    task_link_worker_deadline_margin_seconds: int = 30
    # Project used by the REST enqueue endpoint when the caller omits one.
    task_link_default_project: str | None = None

    # Issue tracker
    gitlab_url: str = "https://gitlab.com"
    # Optional API token. When set, python-gitlab is used for read-only lookups
    # (recovering ambiguous creates, reconciling issue states).
    gitlab_token: str | None = None
    glab_bin: str = "glab"
    glab_timeout_seconds: int = 60

    # Task system (task list + identity directory)
    task_api_base_url: str = "https://open.feishu.cn/open-apis"
    task_app_id: str | None = None
    task_app_secret: str | None = None
    task_api_timeout_seconds: int = 15
    # Heuristic identity fallback: this suffix is stripped from identities that carry it,
    # e.g. "@corp.example". Other identities fall back to the part before "@".
    identity_email_suffix: str | None = None

    # Periodic tracker -> registry status reconciliation (0 disables it)
    tracker_reconcile_interval_minutes: int = 0

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
