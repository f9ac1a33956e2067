"""
Normalization utility helpers.
Turn raw provider payloads into normalize.models entities, and format durations for chat.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional

from normalize.models import Branch, Channel, ChatMessage, Issue, PullRequest, Version

logger = logging.getLogger(__name__)

SEC_IN_MIN = 60
SEC_IN_HOUR = 60 * SEC_IN_MIN

# custom field holding the developer user object
FIELD_DEVELOPER = 'customfield_10026'


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse Jira ('2019-06-03T10:00:00.000+0000') and ISO-8601 timestamps into aware UTC datetimes."""
    if not value:
        return None
    for fmt in ('%Y-%m-%dT%H:%M:%S.%f%z', '%Y-%m-%dT%H:%M:%S%z'):
        try:
            return datetime.strptime(value, fmt).astimezone(timezone.utc)
        except ValueError:
            continue
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        logger.warning("unparseable timestamp %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def fix_version_date(name: str) -> Optional[date]:
    """Release date encoded as '<name>/YYYYMMDD' in a fix-version name."""
    parts = (name or '').split('/')
    if len(parts) != 2:
        return None
    try:
        return datetime.strptime(parts[1], '%Y%m%d').date()
    except ValueError:
        return None


def nearest_fix_version_date(issue: Issue) -> Optional[date]:
    dates = [d for d in (fix_version_date(n) for n in issue.fix_versions) if d is not None]
    return min(dates) if dates else None


def normalize_issue(raw: Dict[str, Any], browse_url: str = '') -> Issue:
    """Create a normalized Issue from a raw Jira issue dict.
    Missing fields are filled with empty defaults.
    """
    fields = raw.get('fields') or {}
    key = raw.get('key') or ''
    priority = fields.get('priority') or {}
    try:
        priority_id = int(priority.get('id') or 0)
    except (TypeError, ValueError):
        priority_id = 0
    assignee = fields.get('assignee') or {}
    developer = fields.get(FIELD_DEVELOPER) or {}
    tracking = fields.get('timetracking') or {}
    worklog = fields.get('worklog') or {}
    worklogs = worklog.get('worklogs') or []
    started = [parse_datetime(w.get('started')) for w in worklogs]
    started = [s for s in started if s is not None]
    return Issue(
        key=key,
        summary=fields.get('summary') or '',
        status=(fields.get('status') or {}).get('name') or '',
        type_name=(fields.get('issuetype') or {}).get('name') or '',
        priority_id=priority_id,
        assignee_account_id=assignee.get('accountId'),
        developer_name=developer.get('displayName') or '' if isinstance(developer, dict) else '',
        due_date=parse_date(fields.get('duedate')),
        fix_versions=[v.get('name') or '' for v in fields.get('fixVersions') or []],
        last_worklog_started=max(started) if started else None,
        worklog_total=int(worklog.get('total') or len(worklogs)),
        original_estimate=int(tracking.get('originalEstimateSeconds') or fields.get('timeoriginalestimate') or 0),
        time_spent=int(tracking.get('timeSpentSeconds') or fields.get('timespent') or 0),
        remaining_estimate=int(tracking.get('remainingEstimateSeconds') or fields.get('timeestimate') or 0),
        resolution_date=parse_datetime(fields.get('resolutiondate')),
        project_key=(fields.get('project') or {}).get('key') or key.split('-')[0],
        parent_key=(fields.get('parent') or {}).get('key'),
        link=f"{browse_url.rstrip('/')}/{key}" if browse_url and key else '',
    )


def normalize_version(raw: Dict[str, Any]) -> Version:
    return Version(
        id=raw.get('id') or '',
        name=raw.get('name') or '',
        project_id=raw.get('projectId'),
        released=bool(raw.get('released')),
        release_date=raw.get('releaseDate') or '',
    )


def normalize_branch(raw: Dict[str, Any], repo_slug: str) -> Branch:
    target = raw.get('target') or {}
    author = target.get('author') or {}
    user = author.get('user') or {}
    return Branch(
        name=raw.get('name') or '',
        repo_slug=repo_slug,
        author_name=user.get('display_name') or user.get('displayName') or '',
        link=((raw.get('links') or {}).get('html') or {}).get('href') or '',
    )


def normalize_pull_request(raw: Dict[str, Any], repo_slug: str) -> PullRequest:
    return PullRequest(
        id=raw.get('id') or 0,
        repo_slug=repo_slug,
        title=raw.get('title') or '',
        author_name=(raw.get('author') or {}).get('display_name') or '',
        link=((raw.get('links') or {}).get('html') or {}).get('href') or '',
        source_branch=(((raw.get('source') or {}).get('branch')) or {}).get('name') or '',
        destination_branch=(((raw.get('destination') or {}).get('branch')) or {}).get('name') or '',
        updated_on=parse_datetime(raw.get('updated_on')),
    )


def last_activity_from_feed(activity: list) -> Optional[datetime]:
    """Latest date over approval, update and comment events of a pull-request activity feed."""
    stamps = []
    for item in activity or []:
        if 'approval' in item:
            stamps.append(parse_datetime((item['approval'] or {}).get('date')))
        if 'update' in item:
            stamps.append(parse_datetime((item['update'] or {}).get('date')))
        if 'comment' in item:
            comment = item['comment'] or {}
            stamps.append(parse_datetime(comment.get('updated_on') or comment.get('created_on')))
    stamps = [s for s in stamps if s is not None]
    return max(stamps) if stamps else None


def normalize_message(raw: Dict[str, Any]) -> ChatMessage:
    return ChatMessage(
        ts=raw.get('ts') or '',
        user=raw.get('user') or '',
        text=raw.get('text') or '',
        bot_id=raw.get('bot_id') or '',
        subtype=raw.get('subtype') or '',
        reply_count=raw.get('reply_count') or 0,
        thread_ts=raw.get('thread_ts') or '',
        reactions=raw.get('reactions') or [],
    )


def normalize_channel(raw: Dict[str, Any], members=None) -> Channel:
    return Channel(
        id=raw.get('id') or '',
        name=raw.get('name') or '',
        is_archived=bool(raw.get('is_archived')),
        is_channel=bool(raw.get('is_channel', True)),
        members=list(members or []),
    )


def _check_non_negative(seconds: int):
    if seconds < 0:
        raise ValueError("time can not be less than zero")


def format_duration(value) -> str:
    """Canonical chat duration: '1d02h05m', '2h05m' or '5m'. Accepts seconds or a timedelta."""
    seconds = int(value.total_seconds()) if isinstance(value, timedelta) else int(value)
    _check_non_negative(seconds)
    days, seconds = divmod(seconds, 24 * SEC_IN_HOUR)
    hours, seconds = divmod(seconds, SEC_IN_HOUR)
    minutes = seconds // SEC_IN_MIN
    if days:
        return f"{days}d{hours:02d}h{minutes:02d}m"
    if hours:
        return f"{hours}h{minutes:02d}m"
    return f"{minutes}m"
