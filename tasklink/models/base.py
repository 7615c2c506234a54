"""Database base configuration"""
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from tasklink.config import settings

logger = logging.getLogger(__name__)


def _connect_args(database_url: str) -> dict:
    if "sqlite" not in database_url:
        return {}
    # Lock waits must end well inside a job's visibility lease.
    timeout = max(
        1,
        settings.task_link_worker_visibility_timeout_seconds
        - settings.task_link_worker_deadline_margin_seconds,
    )
    return {"check_same_thread": False, "timeout": timeout}


engine = create_engine(settings.database_url, connect_args=_connect_args(settings.database_url))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _ensure_task_link_indexes(bind):
    """
    Best-effort schema hardening for databases created before the natural key was settled:
    `task_id` is the only uniqueness constraint on task_links; the tracker side is a plain
    lookup index.
    """
    stmts = [
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_task_links_task_id ON task_links(task_id)",
        "CREATE INDEX IF NOT EXISTS ix_task_links_tracker_issue "
        "ON task_links(tracker_project, tracker_issue_iid)",
        "CREATE INDEX IF NOT EXISTS ix_task_link_jobs_visible_at ON task_link_jobs(visible_at)",
    ]
    with bind.begin() as conn:
        for sql in stmts:
            try:
                conn.exec_driver_sql(sql)
            except Exception as e:
                # Some dialects may not support IF NOT EXISTS; the index usually exists already.
                logger.warning(f"Skipping index hardening statement ({sql.split(' ON ')[0]}): {e}")


def init_db(bind=None):
    """Initialize database"""
    # Ensure all models are imported so SQLAlchemy metadata is populated.
    import tasklink.models  # noqa: F401  (import for side-effects)

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    _ensure_task_link_indexes(bind)
