"""
Service ports consumed by the detectors, webhooks and the release bot.
Adapters live in ingest/; tests substitute in-memory fakes. Every operation raises
storage.errors.InternalError when the remote service fails.
"""

from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from normalize.models import Branch, Channel, ChatMessage, Issue, PullRequest, Version


class IssueTracker(Protocol):
    def search_issues(self, jql: str, fields: Optional[List[str]] = None, page_size: int = 50) -> List[Issue]: ...

    def open_issues_with_last_worklog(self) -> List[Issue]: ...

    def issues_closed_between(self, start: date, end: date) -> List[Issue]: ...

    def transition_issue(self, key: str, transition: str) -> None: ...

    def get_version(self, version_id: str) -> Version: ...

    def get_project(self, key: str) -> Dict: ...

    def list_unreleased_versions(self, project_key: str) -> List[Version]: ...

    def count_issues_for_version(self, version_id: str) -> Tuple[int, int]: ...


class SourceHost(Protocol):
    def list_repositories(self) -> List[Dict]: ...

    def list_open_pull_requests(self, repo_slug: str) -> List[PullRequest]: ...

    def list_pull_request_activity(self, repo_slug: str, pr_id: int) -> List[Dict]: ...

    def list_branches_without_pull_requests(self) -> List[Branch]: ...

    def delete_branch(self, repo_slug: str, name: str) -> None: ...

    def pull_request_diff(self, repo_slug: str, pr_id: int) -> str: ...

    def repo_slug_for_project(self, project_key: str) -> str: ...

    def create_branch(self, repo_slug: str, name: str, from_branch: str) -> None: ...


class FileHost(Protocol):
    def get_file(self, project_id, path: str, ref: str) -> bytes: ...


class TimeTracker(Protocol):
    def report_by_member_and_team(self, start: date, end: date, org_id) -> List[Dict]: ...


class Chat(Protocol):
    def list_channels(self) -> List[Channel]: ...

    def channel_history(self, channel_id: str, oldest: datetime, latest: datetime) -> List[ChatMessage]: ...

    def channel_message(self, channel_id: str, ts: str) -> Optional[ChatMessage]: ...

    def thread_replies(self, channel_id: str, ts: str) -> List[ChatMessage]: ...

    def message_permalink(self, channel_id: str, ts: str) -> str: ...

    def send_message(self, channel_id: str, text: str) -> None: ...

    def send_to_thread(self, channel_id: str, thread_ts: str, text: str) -> None: ...

    def send_file(self, channel_id: str, data: bytes, content_type: str, filename: str) -> None: ...


class MessagingBot(Protocol):
    def get_updates(self, offset: Optional[int] = None, timeout: int = 60) -> Iterable[Dict]: ...

    def send_message(self, chat_id: int, text: str, parse_mode: Optional[str] = None) -> None: ...

    def send_keyboard(self, chat_id: int, text: str, rows: List[List[Dict[str, str]]]) -> None: ...

    def answer_callback(self, callback_query_id: str, text: str = '') -> None: ...
