"""Database models"""

from tasklink.models.base import Base
from tasklink.models.dead_letter import DeadLetter
from tasklink.models.link_job import LinkJob
from tasklink.models.task_link import TaskLink
from tasklink.models.user_mapping import UserMapping

__all__ = [
    "Base",
    "DeadLetter",
    "LinkJob",
    "TaskLink",
    "UserMapping",
]
