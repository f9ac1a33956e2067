"""
Persisted entities of the state store.
Timestamps are aware UTC datetimes; vacation bounds are calendar dates.
"""

import json
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

BUCKET_FIRST = 'first'
BUCKET_SECOND = 'second'
BUCKET_THIRD = 'third'
ATTENTION_BUCKETS = (BUCKET_FIRST, BUCKET_SECOND, BUCKET_THIRD)


def to_timestamp(value: datetime) -> float:
    return value.timestamp()


def from_timestamp(value: float) -> datetime:
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


class ProtectedName:
    """
    A branch name or pull-request title that detectors must ignore.
    """

    def __init__(self, name: str, user_id: str = '', comment: str = '', created_at: Optional[datetime] = None):
        self.name = name
        self.user_id = user_id
        self.comment = comment
        self.created_at = created_at or datetime.now(timezone.utc)

    @classmethod
    def from_row(cls, row) -> 'ProtectedName':
        name, user_id, comment, created_at = row
        return cls(name, user_id or '', comment or '', from_timestamp(created_at))


class ForgottenBranch:
    """
    Book-keeping row used to age a branch that has no open pull request.
    """

    def __init__(self, repo_slug: str, name: str, first_seen_at: datetime):
        self.repo_slug = repo_slug
        self.name = name
        self.first_seen_at = first_seen_at

    @property
    def key(self):
        return (self.repo_slug, self.name)

    @classmethod
    def from_row(cls, row) -> 'ForgottenBranch':
        repo_slug, name, first_seen_at = row
        return cls(repo_slug, name, from_timestamp(first_seen_at))


class ForgottenPullRequest:
    """
    Book-keeping row used to age an open pull request without recent activity.
    """

    def __init__(self, repo_slug: str, pull_request_id: int, first_seen_at: datetime):
        self.repo_slug = repo_slug
        self.pull_request_id = int(pull_request_id)
        self.first_seen_at = first_seen_at

    @property
    def key(self):
        return (self.repo_slug, self.pull_request_id)

    @classmethod
    def from_row(cls, row) -> 'ForgottenPullRequest':
        repo_slug, pull_request_id, first_seen_at = row
        return cls(repo_slug, pull_request_id, from_timestamp(first_seen_at))


class AfkTimer:
    def __init__(self, user_id: str, duration: timedelta, updated_at: Optional[datetime] = None):
        self.user_id = user_id
        self.duration = duration
        self.updated_at = updated_at or datetime.now(timezone.utc)

    def expires_at(self) -> datetime:
        return self.updated_at + self.duration

    def is_active(self, now: datetime) -> bool:
        return self.expires_at() > now

    def remaining(self, now: datetime) -> timedelta:
        left = self.expires_at() - now
        return left if left > timedelta(0) else timedelta(0)

    @classmethod
    def from_row(cls, row) -> 'AfkTimer':
        user_id, duration, updated_at = row
        return cls(user_id, timedelta(seconds=int(duration)), from_timestamp(updated_at))


class Vacation:
    """
    A user unavailable between date_start and date_end, both inclusive.
    """

    def __init__(self, user_id: str, date_start: date, date_end: date, message: str = ''):
        if date_start > date_end:
            raise ValueError("vacation start date is after its end date")
        self.user_id = user_id
        self.date_start = date_start
        self.date_end = date_end
        self.message = message

    def covers(self, day: date) -> bool:
        return self.date_start <= day <= self.date_end

    @classmethod
    def from_row(cls, row) -> 'Vacation':
        user_id, date_start, date_end, message = row
        return cls(user_id, date.fromisoformat(date_start), date.fromisoformat(date_end), message or '')


class Reminder:
    """
    A mention notification deferred until an AFK or vacationing user is back.
    reply_count is the anchor message's reply count at capture time.
    """

    def __init__(self, user_id: str, channel_id: str, thread_ts: str, reply_count: int, message: str, id: Optional[int] = None, created_at: Optional[datetime] = None):
        self.id = id
        self.user_id = user_id
        self.channel_id = channel_id
        self.thread_ts = thread_ts
        self.reply_count = int(reply_count or 0)
        self.message = message
        self.created_at = created_at or datetime.now(timezone.utc)

    @classmethod
    def from_row(cls, row) -> 'Reminder':
        id_, user_id, channel_id, thread_ts, reply_count, message, created_at = row
        return cls(user_id, channel_id, thread_ts, reply_count, message, id=id_, created_at=from_timestamp(created_at))


class RbAuth:
    """
    Release-bot registration: a messaging-bot user and the project keys they may browse.
    """

    def __init__(self, tg_user_id: int, username: str = '', first_name: str = '', last_name: str = '', title: str = '', projects: Optional[List[str]] = None, updated_at: Optional[datetime] = None):
        self.tg_user_id = int(tg_user_id)
        self.username = username
        self.first_name = first_name
        self.last_name = last_name
        self.title = title
        self.projects = list(projects or [])
        self.updated_at = updated_at or datetime.now(timezone.utc)

    def has_project(self, key: str) -> bool:
        return key in self.projects

    @classmethod
    def from_row(cls, row) -> 'RbAuth':
        tg_user_id, username, first_name, last_name, title, projects, updated_at = row
        try:
            parsed = json.loads(projects or '[]')
        except ValueError:
            parsed = []
        return cls(tg_user_id, username or '', first_name or '', last_name or '', title or '', parsed, from_timestamp(updated_at))
