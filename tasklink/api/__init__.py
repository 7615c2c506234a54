"""API routes"""

from tasklink.api import jobs, task_links, user_mappings

__all__ = ["jobs", "task_links", "user_mappings"]
