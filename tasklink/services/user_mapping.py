"""Task-system identity -> tracker username resolution"""

import logging
from typing import Dict, Iterable, List, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tasklink.models import UserMapping
from tasklink.services.task_client import TaskSystemError

logger = logging.getLogger(__name__)


def heuristic_tracker_identity(task_identity: Optional[str], email_suffix: Optional[str] = None) -> Optional[str]:
    """Best-effort guess of a tracker username from the identity string itself.

    Strips `email_suffix` (case-insensitive) when present, otherwise keeps the part
    before "@", otherwise returns the trimmed value.
    """
    if not task_identity:
        return None
    trimmed = task_identity.strip()
    if not trimmed:
        return None

    if email_suffix and trimmed.lower().endswith(email_suffix.lower()):
        local = trimmed[: len(trimmed) - len(email_suffix)]
        return local or None

    at = trimmed.find("@")
    if at > 0:
        return trimmed[:at]
    return trimmed


def email_local_part(email: str) -> Optional[str]:
    local = (email or "").strip().split("@", 1)[0]
    return local or None


class UserMappingResolver:
    """Resolve task-system identities: cache first, directory second, heuristic last.

    Only directory-confirmed mappings are cached. The heuristic result is a guess and is
    returned without being stored.
    """

    def __init__(self, db: Session, directory=None, *, email_suffix: Optional[str] = None):
        self.db = db
        # Anything with get_user(user_id) -> DirectoryUser | None
        self.directory = directory
        self.email_suffix = email_suffix

    def get_cached(self, task_identity: str) -> Optional[UserMapping]:
        return (
            self.db.query(UserMapping).filter(UserMapping.task_identity == task_identity).first()
        )

    def resolve(self, task_identity: Optional[str]) -> Optional[str]:
        """Resolve one identity, or None if nothing can be derived"""
        if not task_identity:
            return None

        cached = self.get_cached(task_identity)
        if cached and cached.tracker_identity:
            return cached.tracker_identity

        return self._resolve_uncached(task_identity)

    def resolve_many(self, task_identities: Iterable[str]) -> Dict[str, Optional[str]]:
        """Resolve several identities with one cache query and directory calls for misses"""
        identities: List[str] = []
        for identity in task_identities:
            if identity and identity not in identities:
                identities.append(identity)
        if not identities:
            return {}

        rows = (
            self.db.query(UserMapping).filter(UserMapping.task_identity.in_(identities)).all()
        )
        cached = {row.task_identity: row.tracker_identity for row in rows if row.tracker_identity}

        resolved: Dict[str, Optional[str]] = {}
        for identity in identities:
            if identity in cached:
                resolved[identity] = cached[identity]
            else:
                resolved[identity] = self._resolve_uncached(identity)
        return resolved

    def reverse_lookup(self, tracker_identity: str) -> Optional[str]:
        """Find the task-system identity cached for a tracker username"""
        row = (
            self.db.query(UserMapping)
            .filter(UserMapping.tracker_identity == tracker_identity)
            .order_by(UserMapping.updated_at.desc())
            .first()
        )
        return row.task_identity if row else None

    def save_mapping(
        self, task_identity: str, tracker_identity: str, display_name: Optional[str] = None
    ) -> UserMapping:
        """Upsert a mapping keyed on the task identity"""
        row = self.get_cached(task_identity)
        if row is None:
            row = UserMapping(task_identity=task_identity)
            self.db.add(row)
        row.tracker_identity = tracker_identity
        if display_name:
            row.display_name = display_name
        self.db.commit()
        logger.info(f"Saved user mapping: {task_identity} -> {tracker_identity}")
        return row

    def _resolve_uncached(self, task_identity: str) -> Optional[str]:
        user = None
        if self.directory is not None:
            try:
                user = self.directory.get_user(task_identity)
            except (TaskSystemError, httpx.HTTPError) as e:
                logger.warning(f"Directory lookup failed for {task_identity}: {e}")
                user = None

        tracker_identity = email_local_part(user.email) if user and user.email else None
        if tracker_identity:
            try:
                self.save_mapping(task_identity, tracker_identity, display_name=user.display_name)
            except SQLAlchemyError as e:
                # The resolution is still valid; it just isn't cached this time.
                self.db.rollback()
                logger.warning(f"Failed to cache user mapping for {task_identity}: {e}")
            return tracker_identity

        guess = heuristic_tracker_identity(task_identity, self.email_suffix)
        if guess:
            logger.info(f"No directory email for {task_identity}; using heuristic '{guess}'")
        return guess
