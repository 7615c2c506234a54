"""Link job queue model"""
from sqlalchemy import JSON, Column, DateTime, Index, Integer

from tasklink.models.base import Base
from tasklink.models.task_link import utcnow


class LinkJob(Base):
    """A queued "link this task" message.

    `visible_at` doubles as the lease: a row is deliverable once `visible_at <= now`.
    Each delivery pushes it forward by the visibility timeout and bumps `read_ct`.
    """

    __tablename__ = "task_link_jobs"
    __table_args__ = (Index("ix_task_link_jobs_visible_at", "visible_at"),)

    msg_id = Column(Integer, primary_key=True, autoincrement=True)
    read_ct = Column(Integer, nullable=False, default=0)
    enqueued_at = Column(DateTime, nullable=False, default=utcnow)
    visible_at = Column(DateTime, nullable=False, default=utcnow)
    message = Column(JSON, nullable=False)

    def __repr__(self):
        return f"<LinkJob(msg_id={self.msg_id}, read_ct={self.read_ct})>"
