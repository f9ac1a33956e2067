"""
Inbound webhooks.

Each handler validates its payload synchronously (raising WebhookError for a malformed one) and
returns the follow-up work as a callable for the caller to run in the background.
"""

import logging
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from ingest.bitbucket import CONFLICT_MARKER
from ingest.jira import STATUS_STARTED
from report.renderer import render_template
from settings import TAG_SLACK_ID, TAG_SLACK_REAL_NAME
from storage.errors import BotError

logger = logging.getLogger(__name__)

MIGRATION_PATH_RE = re.compile(r'((etc|db)/migrations/[0-9]{4,}([A-Za-z0-9_]+)?\.sql)')
PUSH_EVENT = 'push'
MAX_PUSH_COMMITS = 20
BASE_BRANCH = 'master'


class WebhookError(ValueError):
    """Malformed webhook payload."""


def _require(payload: Any, *keys: str) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise WebhookError("payload must be a JSON object")
    missing = [k for k in keys if payload.get(k) in (None, '')]
    if missing:
        raise WebhookError(f"missing fields: {', '.join(missing)}")
    return payload


def migration_changes(commits: List[Dict[str, Any]]) -> List[Tuple[str, str]]:
    """(action, path) pairs of migration files touched by a push, in commit order and without repeats."""
    changes: List[Tuple[str, str]] = []
    for commit in commits:
        for action, field in (('ADDED', 'added'), ('MODIFIED', 'modified')):
            for path in commit.get(field) or []:
                if MIGRATION_PATH_RE.search(path) and (action, path) not in changes:
                    changes.append((action, path))
    return changes


def issue_branches(key: str, parent_key: Optional[str]) -> List[Tuple[str, str]]:
    """(branch, created from) pairs for an issue that was just started."""
    if parent_key:
        return [(parent_key, BASE_BRANCH), (f"{parent_key}>{key}", parent_key)]
    return [(key, BASE_BRANCH)]


class Webhooks:
    def __init__(self, services):
        self.services = services

    @property
    def config(self):
        return self.services.config

    def _guarded(self, name: str, fn: Callable[[], None]) -> Callable[[], None]:
        def run():
            try:
                fn()
            except BotError as ex:
                logger.error("%s webhook processing failed: %s", name, ex)
        return run

    # --- source host push ---

    def push(self, payload: Any) -> Optional[Callable[[], None]]:
        payload = _require(payload, 'ref', 'project')
        event = payload.get('event') or payload.get('event_name') or payload.get('object_kind')
        if event != PUSH_EVENT:
            logger.debug("ignoring %s event", event)
            return None
        project = payload['project']
        if not isinstance(project, dict) or project.get('id') is None:
            raise WebhookError("project.id is required")
        commits = payload.get('commits')
        if not isinstance(commits, list):
            raise WebhookError("commits must be a list")
        branch = payload['ref'].replace('refs/heads/', '', 1)
        return self._guarded('push', lambda: self.report_migrations(payload, project, branch, commits))

    def report_migrations(self, payload, project, branch: str, commits):
        dispatcher = self.services.dispatcher
        channel = self.config.channel('migrations')
        project_name = project.get('path_with_namespace') or project.get('name') or str(project['id'])
        total = int(payload.get('total_commits_count') or len(commits))
        if total > MAX_PUSH_COMMITS:
            dispatcher.send_message(
                channel,
                f"WARNING: push to {project_name} ({branch}) has {total} commits, "
                f"only the last {MAX_PUSH_COMMITS} were checked for migrations",
            )
        for action, path in migration_changes(commits):
            content = self.services.gitlab.get_file(project['id'], path, payload['ref'])
            dispatcher.send_message(channel, render_template(
                'git_migration.txt.j2',
                action=action,
                project=project_name,
                branch=branch,
                path=path,
                user_name=payload.get('user_name') or 'unknown',
                content=content.decode('utf-8', errors='replace'),
            ))

    # --- issue tracker ---

    def issue_updated(self, payload: Any) -> Optional[Callable[[], None]]:
        issue = _require(_require(payload, 'issue')['issue'], 'key')
        fields = issue.get('fields') or {}
        status = (fields.get('status') or {}).get('name')
        if status != STATUS_STARTED:
            return None
        key = issue['key']
        project_key = (fields.get('project') or {}).get('key') or key.split('-')[0]
        parent_key = (fields.get('parent') or {}).get('key')
        return self._guarded('issue-updated', lambda: self.create_issue_branches(project_key, key, parent_key))

    def create_issue_branches(self, project_key: str, key: str, parent_key: Optional[str]):
        source = self.services.source
        repo_slug = source.repo_slug_for_project(project_key)
        for name, from_branch in issue_branches(key, parent_key):
            source.create_branch(repo_slug, name, from_branch)

    # --- pull request merged ---

    def pr_merged(self, payload: Any) -> Optional[Callable[[], None]]:
        payload = _require(payload, 'repository')
        repository = payload['repository']
        if not isinstance(repository, dict):
            raise WebhookError("repository must be an object")
        full_name = repository.get('full_name') or repository.get('name')
        if not full_name:
            raise WebhookError("repository name is required")
        repo_slug = full_name.split('/')[-1]
        destination = ((((payload.get('pullrequest') or {}).get('destination') or {}).get('branch')) or {}).get('name') or ''
        return self._guarded('pr-merged', lambda: self.notify_conflicts(repo_slug, destination))

    def notify_conflicts(self, repo_slug: str, destination: str):
        source = self.services.source
        users = self.config.users
        for pr in source.list_open_pull_requests(repo_slug):
            if destination and pr.destination_branch and pr.destination_branch != destination:
                continue
            if CONFLICT_MARKER not in source.pull_request_diff(repo_slug, pr.id):
                continue
            user = users.lookup(TAG_SLACK_REAL_NAME, pr.author_name)
            slack_id = users.value(user, TAG_SLACK_ID)
            if not slack_id:
                logger.warning("pull request %s has conflicts but %r has no chat id", pr.id, pr.author_name)
                continue
            self.services.dispatcher.send_message(slack_id, f"Pull request {pr.chat_link()} has conflicts, please resolve them")
