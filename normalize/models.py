"""
Normalized entities exchanged between the service ports and the detectors.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Set


class Issue:
    """
    Normalized issue-tracker entity with the time-tracking and work-log fields the detectors use.
    """

    def __init__(
        self,
        key: str,
        summary: str = '',
        status: str = '',
        type_name: str = '',
        priority_id: int = 0,
        assignee_account_id: Optional[str] = None,
        developer_name: str = '',
        due_date: Optional[date] = None,
        fix_versions: Optional[List[str]] = None,
        last_worklog_started: Optional[datetime] = None,
        worklog_total: int = 0,
        original_estimate: int = 0,
        time_spent: int = 0,
        remaining_estimate: int = 0,
        resolution_date: Optional[datetime] = None,
        project_key: str = '',
        parent_key: Optional[str] = None,
        link: str = '',
    ):
        self.key = key
        self.summary = summary
        self.status = status
        self.type_name = type_name
        self.priority_id = priority_id
        self.assignee_account_id = assignee_account_id
        self.developer_name = developer_name
        self.due_date = due_date
        self.fix_versions = fix_versions or []
        self.last_worklog_started = last_worklog_started
        self.worklog_total = worklog_total
        self.original_estimate = original_estimate
        self.time_spent = time_spent
        self.remaining_estimate = remaining_estimate
        self.resolution_date = resolution_date
        self.project_key = project_key
        self.parent_key = parent_key
        self.link = link

    def chat_link(self) -> str:
        return f"<{self.link}|{self.key}>" if self.link else self.key

    def __repr__(self):
        return f"Issue({self.key!r}, priority={self.priority_id}, status={self.status!r})"


class Version:
    """
    A release (fix version) of an issue-tracker project.
    """

    def __init__(self, id: str, name: str, project_id: Optional[str] = None, released: bool = False, release_date: str = ''):
        self.id = str(id)
        self.name = name
        self.project_id = str(project_id) if project_id is not None else None
        self.released = released
        self.release_date = release_date


class Branch:
    def __init__(self, name: str, repo_slug: str, author_name: str = '', link: str = ''):
        self.name = name
        self.repo_slug = repo_slug
        self.author_name = author_name
        self.link = link

    def chat_link(self) -> str:
        return f"<{self.link}|{self.name}>" if self.link else self.name


class PullRequest:
    def __init__(
        self,
        id: int,
        repo_slug: str,
        title: str,
        author_name: str = '',
        link: str = '',
        source_branch: str = '',
        destination_branch: str = '',
        updated_on: Optional[datetime] = None,
        last_activity_at: Optional[datetime] = None,
    ):
        self.id = int(id)
        self.repo_slug = repo_slug
        self.title = title
        self.author_name = author_name
        self.link = link
        self.source_branch = source_branch
        self.destination_branch = destination_branch
        self.updated_on = updated_on
        # max over approve/update/comment events, filled from the activity feed
        self.last_activity_at = last_activity_at or updated_on

    def chat_link(self) -> str:
        return f"<{self.link}|{self.title}>" if self.link else self.title


class ChatMessage:
    """
    A chat message or thread reply. Bot messages carry a bot id or a subtype.
    """

    def __init__(
        self,
        ts: str,
        user: str = '',
        text: str = '',
        bot_id: str = '',
        subtype: str = '',
        reply_count: int = 0,
        thread_ts: str = '',
        reactions: Optional[List[Dict[str, Any]]] = None,
    ):
        self.ts = ts
        self.user = user
        self.text = text
        self.bot_id = bot_id
        self.subtype = subtype
        self.reply_count = int(reply_count or 0)
        self.thread_ts = thread_ts
        self.reactions = reactions or []

    def is_from_bot(self) -> bool:
        return bool(self.subtype or self.bot_id)

    def reacted_users(self) -> Set[str]:
        users = set()
        for reaction in self.reactions:
            users.update(reaction.get('users') or [])
        return users


class Channel:
    def __init__(self, id: str, name: str = '', is_archived: bool = False, is_channel: bool = True, members: Optional[List[str]] = None):
        self.id = id
        self.name = name
        self.is_archived = is_archived
        self.is_channel = is_channel
        self.members = members or []

    def is_actual(self) -> bool:
        return not self.is_archived and self.is_channel and len(self.members) > 0
