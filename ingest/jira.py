"""
Jira client backing the IssueTracker port.
Issues come back normalized (normalize.models.Issue); any non-success response raises InternalError.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from ingest.retry import request_with_retries
from normalize.models import Issue, Version
from normalize.util import normalize_issue, normalize_version
from storage.errors import InternalError, NotFoundError

logger = logging.getLogger(__name__)

STATUS_OPEN = 'Open'
STATUS_STARTED = 'Started'
STATUS_CLOSED = 'Closed'
TRANSITION_START = 'Start'

DEFAULT_FIELDS = [
    'summary', 'status', 'issuetype', 'priority', 'assignee', 'duedate', 'fixVersions', 'worklog',
    'timetracking', 'resolutiondate', 'project', 'parent', 'customfield_10026',
]


class JiraClient:
    """Minimal Jira REST client for the operations the bot needs."""

    def __init__(self, base_url: str, username: str, token: str, browse_url: Optional[str] = None):
        self.base_url = (base_url or '').rstrip('/')
        self.auth = (username, token) if username else None
        self.browse_url = browse_url or f"{self.base_url}/browse"
        self.headers = {"Accept": "application/json"}

    def _api(self, path: str) -> str:
        return f"{self.base_url}/rest/api/2/{path.lstrip('/')}"

    def _call(self, method: str, path: str, params: Optional[Dict[str, Any]] = None, json: Any = None, expect=(200,)):
        res = request_with_retries(method, self._api(path), headers=self.headers, params=params, json=json, auth=self.auth)
        status = res.get('status', 0)
        if status == 404:
            raise NotFoundError(f"jira {path} not found")
        if status not in expect:
            logger.error("jira %s %s failed with %s: %s", method, path, status, res.get('response'))
            raise InternalError(f"jira {method} {path} failed with status {status}")
        return res.get('response')

    def search_issues(self, jql: str, fields: Optional[List[str]] = None, page_size: int = 50) -> List[Issue]:
        """Return every issue matching jql, following startAt/maxResults pagination."""
        issues: List[Issue] = []
        start_at = 0
        while True:
            params = {"jql": jql, "startAt": start_at, "maxResults": page_size, "fields": ','.join(fields or DEFAULT_FIELDS)}
            data = self._call('GET', 'search', params=params) or {}
            batch = data.get('issues', [])
            issues.extend(normalize_issue(raw, self.browse_url) for raw in batch)
            if len(batch) < page_size:
                break
            start_at += page_size
        return issues

    def last_worklog(self, key: str, total: int) -> Optional[Dict[str, Any]]:
        """Fetch only the most recent work-log entry of an issue."""
        data = self._call('GET', f'issue/{key}/worklog', params={"startAt": max(total - 1, 0)}) or {}
        worklogs = data.get('worklogs') or []
        return worklogs[-1] if worklogs else None

    def open_issues_with_last_worklog(self) -> List[Issue]:
        """Open and started issues with a developer, each carrying its latest work-log start."""
        jql = f'status in ("{STATUS_OPEN}", "{STATUS_STARTED}") AND Developer is not EMPTY ORDER BY priority DESC'
        issues = self.search_issues(jql)
        for issue in issues:
            if not issue.worklog_total:
                continue
            latest = self.last_worklog(issue.key, issue.worklog_total)
            if latest:
                fresh = normalize_issue({'key': issue.key, 'fields': {'worklog': {'total': issue.worklog_total, 'worklogs': [latest]}}})
                issue.last_worklog_started = fresh.last_worklog_started or issue.last_worklog_started
        return issues

    def issues_closed_between(self, start: date, end: date) -> List[Issue]:
        jql = f'status = "{STATUS_CLOSED}" AND resolutiondate >= "{start.isoformat()}" AND resolutiondate <= "{end.isoformat()}"'
        return self.search_issues(jql)

    def transition_issue(self, key: str, transition: str) -> None:
        """Move an issue through the workflow transition with the given name."""
        data = self._call('GET', f'issue/{key}/transitions') or {}
        for item in data.get('transitions', []):
            if item.get('name') == transition:
                self._call('POST', f'issue/{key}/transitions', json={"transition": {"id": item.get('id')}}, expect=(200, 204))
                logger.info("issue %s moved via transition %s", key, transition)
                return
        raise InternalError(f"transition {transition} is not available for {key}")

    def get_version(self, version_id: str) -> Version:
        return normalize_version(self._call('GET', f'version/{version_id}') or {})

    def get_project(self, key: str) -> Dict[str, Any]:
        return self._call('GET', f'project/{key}') or {}

    def list_unreleased_versions(self, project_key: str) -> List[Version]:
        data = self._call('GET', f'project/{project_key}/versions') or []
        return [normalize_version(v) for v in data if not v.get('released') and not v.get('archived')]

    def count_issues_for_version(self, version_id: str) -> Tuple[int, int]:
        """Return (total, unresolved) issue counts of a version."""
        related = self._call('GET', f'version/{version_id}/relatedIssueCounts') or {}
        unresolved = self._call('GET', f'version/{version_id}/unresolvedIssueCount') or {}
        return int(related.get('issuesFixedCount') or 0), int(unresolved.get('issuesUnresolvedCount') or 0)
