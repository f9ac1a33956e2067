"""
Detectors: scheduled policy checks over the external services and the state store.
"""

from .afk_timers import AfkTimerSweeper
from .base import Detector
from .forgotten_branches import ForgottenBranches
from .forgotten_pull_requests import ForgottenPullRequests
from .less_worked import LessWorked
from .low_priority import LowPriorityIssuesStarted
from .mention_reply import MentionReply
from .reminders import ReminderEngine
from .works_ratio import WorksRatio

__all__ = [
    "AfkTimerSweeper",
    "Detector",
    "ForgottenBranches",
    "ForgottenPullRequests",
    "LessWorked",
    "LowPriorityIssuesStarted",
    "MentionReply",
    "ReminderEngine",
    "WorksRatio",
]
