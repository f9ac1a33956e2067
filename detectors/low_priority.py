"""
LowPriorityIssuesStarted: a developer logged work within the last hour on an issue that is not
the most urgent one they own.
"""

import logging
from datetime import timedelta
from typing import Dict, List

from ingest.jira import STATUS_OPEN, STATUS_STARTED, TRANSITION_START
from normalize.models import Issue
from normalize.util import nearest_fix_version_date
from ports import IssueTracker
from report.renderer import render_template
from settings import TAG_JIRA_ACCOUNT_ID, TAG_SLACK_ID, TAG_SLACK_REAL_NAME, UNKNOWN_USER, mention
from storage.errors import BotError

from .base import Detector

logger = logging.getLogger(__name__)

ACTIVE_WINDOW = timedelta(hours=1)


def _not_later(value, limit) -> bool:
    if limit is None:
        return True
    if value is None:
        return False
    return value <= limit


def is_acceptable_order(active: Issue, priority: Issue) -> bool:
    """Same-priority work is fine when the active issue is due and released no later than the priority one."""
    return _not_later(active.due_date, priority.due_date) and _not_later(
        nearest_fix_version_date(active), nearest_fix_version_date(priority)
    )


class LowPriorityIssuesStarted(Detector):
    name = 'low_priority_issues'

    def __init__(self, tracker: IssueTracker, store, dispatcher, config, clock=None):
        super().__init__(store, dispatcher, config, clock)
        self.tracker = tracker

    def start_if_open(self, issue: Issue):
        if issue.status != STATUS_OPEN or not issue.worklog_total:
            return
        try:
            self.tracker.transition_issue(issue.key, TRANSITION_START)
            issue.status = STATUS_STARTED
        except BotError as ex:
            logger.error("can't start %s: %s", issue.key, ex)

    def check_developer(self, account_id: str, owned: List[Issue], now) -> str:
        """Notification text for one developer, or '' when their current work is in order."""
        users = self.config.users
        user = users.lookup(TAG_JIRA_ACCOUNT_ID, account_id)
        real_name = users.value(user, TAG_SLACK_REAL_NAME) or owned[0].developer_name
        if real_name in self.config.ignore_list:
            return ''

        recent = [i for i in owned if i.last_worklog_started is not None and i.last_worklog_started >= now - ACTIVE_WINDOW]
        if not recent:
            return ''
        active = max(recent, key=lambda i: i.last_worklog_started)
        self.start_if_open(active)

        priority = min(owned, key=lambda i: i.priority_id)
        if active.key == priority.key or (active.priority_id == priority.priority_id and is_acceptable_order(active, priority)):
            return ''

        employees = self.config.employees
        slack_id = users.value(user, TAG_SLACK_ID)
        return render_template(
            'low_priority_started.txt.j2',
            developer=mention(slack_id) if slack_id else (real_name or UNKNOWN_USER),
            active_link=active.chat_link(),
            priority_link=priority.chat_link(),
            project_manager=mention(employees.project_manager),
            team_leader=mention(employees.leader_of(employees.team_of(real_name))),
        )

    def run(self, stop_event=None):
        now = self.clock()
        by_developer: Dict[str, List[Issue]] = {}
        for issue in self.tracker.open_issues_with_last_worklog():
            if issue.assignee_account_id:
                by_developer.setdefault(issue.assignee_account_id, []).append(issue)

        channel = self.config.channel('back_office')
        for account_id in sorted(by_developer):
            if self.cancelled(stop_event):
                return
            self.dispatcher.send_message(channel, self.check_developer(account_id, by_developer[account_id], now))
