"""User mapping model"""
from sqlalchemy import Column, DateTime, Integer, String

from tasklink.models.base import Base
from tasklink.models.task_link import utcnow


class UserMapping(Base):
    """Cached task-system identity -> tracker username mapping"""

    __tablename__ = "user_mappings"

    id = Column(Integer, primary_key=True, index=True)

    # Task-system identity (open_id or similar)
    task_identity = Column(String, nullable=False, unique=True, index=True)

    # Tracker username
    tracker_identity = Column(String, nullable=False, index=True)
    display_name = Column(String, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<UserMapping({self.task_identity} -> {self.tracker_identity})>"
