"""
In-memory stand-ins for the service ports, plus helpers shared by the detector tests.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

from dispatcher import Dispatcher
from normalize.models import ChatMessage
from settings import Config
from storage.store import StateStore

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

CONFIG = {
    'slack': {
        'bot_ids': ['UBOT'],
        'ignore_list': ['Ignored Person'],
        'channels': {'back_office': 'C-BO', 'reports': 'C-REP'},
        'employees': {
            'project_manager': 'UPM',
            'art_director': 'UART',
            'team_leader_be': 'UTLB',
            'team_leader_fe': 'UTLF',
            'team_leader_devops': 'UTLD',
            'be_team': ['Dev One', 'Backend Two'],
            'fe_team': ['Front One'],
            'design': ['Artist One'],
        },
    },
    'jira': {'browse_url': 'https://jira.example.com/browse'},
    'hubstaff': {'org_id': 42},
    'users': [
        {'slackid': 'UD', 'slackrealname': 'Dev One', 'email': 'dev@example.com', 'jiraaccountid': 'acc-d'},
        {'slackid': 'UB2', 'slackrealname': 'Backend Two', 'email': 'be2@example.com', 'jiraaccountid': 'acc-b2'},
        {'slackid': 'UF', 'slackrealname': 'Front One', 'email': 'fe@example.com', 'jiraaccountid': 'acc-f'},
        {'slackid': 'UI', 'slackrealname': 'Ignored Person', 'email': 'ignored@example.com', 'jiraaccountid': 'acc-i'},
    ],
}


def make_config(**overrides) -> Config:
    data = {k: (dict(v) if isinstance(v, dict) else v) for k, v in CONFIG.items()}
    data.update(overrides)
    return Config(data)


def make_store():
    """A migrated store on a temporary file; returns (store, path)."""
    tmp = tempfile.NamedTemporaryFile(suffix='.db', delete=False)
    path = tmp.name
    tmp.close()
    store = StateStore(path)
    store.migrate()
    return store, path


def drop_store(store, path):
    store.close()
    try:
        os.remove(path)
    except OSError:
        pass


def fixed_clock(now=NOW):
    return lambda: now


def slack_ts(value: datetime) -> str:
    return f"{value.timestamp():.6f}"


class FakeChat:
    def __init__(self, channels=None, history=None, replies=None, fail_on_send=False):
        self.channels = channels or []
        self.history = history or {}
        self.replies = replies or {}
        self.fail_on_send = fail_on_send
        self.sent = []
        self.files = []

    def list_channels(self):
        return list(self.channels)

    def channel_history(self, channel_id, oldest, latest):
        return [m for m in self.history.get(channel_id, []) if oldest.timestamp() <= float(m.ts) < latest.timestamp()]

    def channel_message(self, channel_id, ts):
        for message in self.history.get(channel_id, []):
            if message.ts == ts:
                return message
        return None

    def thread_replies(self, channel_id, ts):
        return list(self.replies.get((channel_id, ts), []))

    def message_permalink(self, channel_id, ts):
        return f"https://chat.example.com/archives/{channel_id}/p{ts.replace('.', '')}"

    def _check(self):
        if self.fail_on_send:
            raise RuntimeError("chat is unavailable")

    def send_message(self, channel_id, text):
        self._check()
        self.sent.append((channel_id, None, text))

    def send_to_thread(self, channel_id, thread_ts, text):
        self._check()
        self.sent.append((channel_id, thread_ts, text))

    def send_file(self, channel_id, data, content_type, filename):
        self._check()
        self.files.append((channel_id, data, content_type, filename))


class FakeSource:
    def __init__(self, branches=None, pull_requests=None, activity=None, diffs=None, files=None):
        self.branches = branches or []
        self.pull_requests = pull_requests or []
        self.activity = activity or {}
        self.diffs = diffs or {}
        self.files = files or {}
        self.deleted = []
        self.created = []

    def list_repositories(self):
        return [{'slug': slug} for slug in sorted({pr.repo_slug for pr in self.pull_requests})]

    def list_open_pull_requests(self, repo_slug):
        return [pr for pr in self.pull_requests if pr.repo_slug == repo_slug]

    def list_pull_request_activity(self, repo_slug, pr_id):
        return list(self.activity.get((repo_slug, pr_id), []))

    def list_branches_without_pull_requests(self):
        return list(self.branches)

    def delete_branch(self, repo_slug, name):
        self.deleted.append((repo_slug, name))

    def pull_request_diff(self, repo_slug, pr_id):
        return self.diffs.get((repo_slug, pr_id), '')

    def repo_slug_for_project(self, project_key):
        return project_key.lower()

    def create_branch(self, repo_slug, name, from_branch):
        self.created.append((repo_slug, name, from_branch))

    def get_file(self, project_id, path, ref):
        return self.files[path]


class FakeTracker:
    def __init__(self, open_issues=None, closed_issues=None, versions=None, projects=None, unreleased=None, counts=None):
        self.open_issues = open_issues or []
        self.closed_issues = closed_issues or []
        self.versions = versions or {}
        self.projects = projects or {}
        self.unreleased = unreleased or {}
        self.counts = counts or {}
        self.transitions = []
        self.closed_queries = []

    def open_issues_with_last_worklog(self):
        return list(self.open_issues)

    def issues_closed_between(self, start, end):
        self.closed_queries.append((start, end))
        return list(self.closed_issues)

    def transition_issue(self, key, transition):
        self.transitions.append((key, transition))

    def get_version(self, version_id):
        return self.versions[version_id]

    def get_project(self, key):
        return self.projects[key]

    def list_unreleased_versions(self, project_key):
        return list(self.unreleased.get(project_key, []))

    def count_issues_for_version(self, version_id):
        return self.counts.get(version_id, (0, 0))


class FakeTimeTracker:
    def __init__(self, organizations=None):
        self.organizations = organizations or []
        self.queries = []

    def report_by_member_and_team(self, start, end, org_id):
        self.queries.append((start, end, org_id))
        return self.organizations


class FakeBot:
    def __init__(self, updates=None):
        self.updates = list(updates or [])
        self.messages = []
        self.keyboards = []
        self.answered = []

    def get_updates(self, offset=None, timeout=60):
        batch, self.updates = self.updates, []
        return batch

    def send_message(self, chat_id, text, parse_mode=None):
        self.messages.append((chat_id, text, parse_mode))

    def send_keyboard(self, chat_id, text, rows):
        self.keyboards.append((chat_id, text, rows))

    def answer_callback(self, callback_query_id, text=''):
        self.answered.append(callback_query_id)


def make_dispatcher(chat):
    return Dispatcher(chat, min_interval=0)


def message(ts_time: datetime, user='', text='', reply_count=0, reactions=None, bot_id=''):
    return ChatMessage(slack_ts(ts_time), user=user, text=text, reply_count=reply_count, reactions=reactions or [], bot_id=bot_id)


def hours_ago(hours: float, now=NOW) -> datetime:
    return now - timedelta(hours=hours)
