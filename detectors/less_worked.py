"""
LessWorked: yesterday's time-tracker totals; BE and FE developers under the daily minimum are
listed per team with their team leader and the project manager copied.
"""

import logging
from datetime import timedelta
from typing import Dict, List

from normalize.util import SEC_IN_HOUR
from ports import TimeTracker
from report.renderer import render_template
from settings import TAG_EMAIL, TAG_SLACK_ID, TAG_SLACK_REAL_NAME, TEAM_BE, TEAM_FE, mention

from .base import Detector

logger = logging.getLogger(__name__)

MIN_HOURS = 6
REPORTED_TEAMS = (TEAM_BE, TEAM_FE)


class LessWorked(Detector):
    name = 'less_worked'

    def __init__(self, time_tracker: TimeTracker, store, dispatcher, config, clock=None):
        super().__init__(store, dispatcher, config, clock)
        self.time_tracker = time_tracker

    def short_days(self, organizations) -> Dict[str, List[str]]:
        users = self.config.users
        employees = self.config.employees
        ignored = set(self.config.ignore_list)
        teams: Dict[str, List[str]] = {team: [] for team in REPORTED_TEAMS}
        for org in organizations:
            for member in org.get('users') or []:
                if int(member.get('duration') or 0) >= MIN_HOURS * SEC_IN_HOUR:
                    continue
                user = users.lookup(TAG_EMAIL, member.get('email') or '')
                real_name = users.value(user, TAG_SLACK_REAL_NAME) or member.get('name') or ''
                if real_name in ignored:
                    continue
                team = employees.team_of(real_name)
                if team not in teams:
                    continue
                slack_id = users.value(user, TAG_SLACK_ID)
                teams[team].append(mention(slack_id) if slack_id else real_name)
        return teams

    def run(self, stop_event=None):
        yesterday = self.clock().date() - timedelta(days=1)
        organizations = self.time_tracker.report_by_member_and_team(yesterday, yesterday, self.config.hubstaff.get('org_id'))
        employees = self.config.employees
        channel = self.config.channel('back_office')
        for team, names in self.short_days(organizations).items():
            if self.cancelled(stop_event):
                return
            if not names:
                continue
            self.dispatcher.send_message(channel, render_template(
                'less_worked.txt.j2',
                mentions=names,
                hours=MIN_HOURS,
                team_leader=mention(employees.leader_of(team)),
                project_manager=mention(employees.project_manager),
            ))
            logger.info("less worked: %d %s developers reported", len(names), team)
