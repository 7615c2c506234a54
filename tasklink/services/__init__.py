"""Services"""

from tasklink.services.issue_creator import IssueCreator
from tasklink.services.job_queue import LinkJobQueue
from tasklink.services.link_processor import LinkJobProcessor
from tasklink.services.link_registry import LinkRegistry
from tasklink.services.status_sync import StatusMirror
from tasklink.services.user_mapping import UserMappingResolver

__all__ = [
    "IssueCreator",
    "LinkJobProcessor",
    "LinkJobQueue",
    "LinkRegistry",
    "StatusMirror",
    "UserMappingResolver",
]
