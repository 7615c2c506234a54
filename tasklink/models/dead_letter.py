"""Dead letter model"""
import enum

from sqlalchemy import JSON, Column, DateTime, Enum, Integer, String, Text

from tasklink.models.base import Base
from tasklink.models.task_link import utcnow


class DeadLetterReason(str, enum.Enum):
    """Why a link job was dropped"""
    MALFORMED = "malformed"
    ATTEMPTS_EXCEEDED = "attempts_exceeded"
    AMBIGUOUS_CREATE = "ambiguous_create"


class DeadLetter(Base):
    """Record of a link job acknowledged without effect"""

    __tablename__ = "task_link_dead_letters"

    id = Column(Integer, primary_key=True, index=True)

    # Job information
    msg_id = Column(Integer, nullable=False)
    task_id = Column(String, nullable=True, index=True)
    read_count = Column(Integer, nullable=False, default=0)

    # Drop details
    reason = Column(Enum(DeadLetterReason), nullable=False)
    message = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)

    # Timestamp
    created_at = Column(DateTime, default=utcnow, index=True)

    def __repr__(self):
        return f"<DeadLetter(msg_id={self.msg_id}, reason={self.reason})>"
