"""
WorksRatio: weekly sheet of closed issues whose time spent overran the original estimate.
"""

import logging
from datetime import timedelta

from normalize.util import SEC_IN_HOUR
from ports import IssueTracker
from report.renderer import render_works_ratio_csv

from .base import Detector

logger = logging.getLogger(__name__)

NO_DEVELOPER = 'No developer'
REPORT_PERIOD = timedelta(days=7)
MIN_ESTIMATE = 100
MIN_OVERRUN = SEC_IN_HOUR
CONTENT_TYPE = 'text/csv'


def overrun_percent(issue) -> float:
    return (issue.time_spent - issue.original_estimate) / (issue.original_estimate / 100)


def is_overrun(issue) -> bool:
    estimate = issue.original_estimate
    if estimate == 0 or issue.remaining_estimate != 0 or estimate < MIN_ESTIMATE:
        return False
    over = issue.time_spent - estimate
    return over >= estimate / 10 and over >= MIN_OVERRUN


def _hours(seconds: int) -> float:
    return round(seconds / SEC_IN_HOUR, 2)


class WorksRatio(Detector):
    name = 'works_ratio'

    def __init__(self, tracker: IssueTracker, store, dispatcher, config, clock=None):
        super().__init__(store, dispatcher, config, clock)
        self.tracker = tracker

    def rows(self, issues):
        types = set(self.config.jira.get('works_ratio_types', []))
        ignored = set(self.config.ignore_list)
        selected = []
        for issue in issues:
            developer = issue.developer_name or NO_DEVELOPER
            if issue.type_name not in types or developer in ignored or not is_overrun(issue):
                continue
            selected.append(issue)
        selected.sort(key=overrun_percent)
        return [
            [
                issue.developer_name or NO_DEVELOPER,
                issue.resolution_date.strftime('%d.%m.%Y') if issue.resolution_date else '',
                issue.link or issue.key,
                issue.type_name,
                _hours(issue.original_estimate),
                _hours(issue.time_spent),
                _hours(issue.time_spent - issue.original_estimate),
                round(overrun_percent(issue)),
            ]
            for issue in selected
        ]

    def run(self, stop_event=None):
        end = self.clock().date()
        start = end - REPORT_PERIOD
        rows = self.rows(self.tracker.issues_closed_between(start, end))
        if self.cancelled(stop_event):
            return
        if not rows:
            logger.info("works ratio: no overrun issues between %s and %s", start, end)
            return
        data = render_works_ratio_csv(rows).encode('utf-8')
        filename = f"works-ratio-{start.isoformat()}-{end.isoformat()}.csv"
        self.dispatcher.send_file(self.config.channel('reports'), data, CONTENT_TYPE, filename)
        logger.info("works ratio: %d issues reported", len(rows))
