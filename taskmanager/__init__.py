"""
Task manager package: cron-scheduled jobs with a single-flight rule per job.
"""

from .manager import TaskManager

__all__ = ["TaskManager"]
