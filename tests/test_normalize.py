import unittest
from datetime import date, datetime, timedelta, timezone

import pytest

from normalize.models import Issue
from normalize.util import (
    fix_version_date,
    format_duration,
    last_activity_from_feed,
    nearest_fix_version_date,
    normalize_issue,
    normalize_message,
    normalize_pull_request,
    parse_datetime,
)


class TestNormalize(unittest.TestCase):
    def test_normalize_issue_jira(self):
        raw = {
            'key': 'APP-100',
            'fields': {
                'summary': 'Checkout fails',
                'status': {'name': 'Open'},
                'issuetype': {'name': 'BE Task'},
                'priority': {'id': '2'},
                'assignee': {'accountId': 'acc-d'},
                'customfield_10026': {'displayName': 'Dev One'},
                'duedate': '2026-03-20',
                'fixVersions': [{'name': 'app/20260325'}],
                'timetracking': {'originalEstimateSeconds': 7200, 'timeSpentSeconds': 9000, 'remainingEstimateSeconds': 0},
                'worklog': {'total': 2, 'worklogs': [
                    {'started': '2026-03-10T09:00:00.000+0000'},
                    {'started': '2026-03-10T11:50:00.000+0000'},
                ]},
                'resolutiondate': '2026-03-10T12:00:00.000+0000',
                'parent': {'key': 'APP-99'},
            },
        }
        issue = normalize_issue(raw, 'https://jira.example.com/browse/')
        self.assertEqual(issue.key, 'APP-100')
        self.assertEqual(issue.priority_id, 2)
        self.assertEqual(issue.developer_name, 'Dev One')
        self.assertEqual(issue.due_date, date(2026, 3, 20))
        self.assertEqual(issue.fix_versions, ['app/20260325'])
        self.assertEqual(issue.last_worklog_started, datetime(2026, 3, 10, 11, 50, tzinfo=timezone.utc))
        self.assertEqual((issue.original_estimate, issue.time_spent, issue.remaining_estimate), (7200, 9000, 0))
        self.assertEqual(issue.project_key, 'APP')
        self.assertEqual(issue.parent_key, 'APP-99')
        self.assertEqual(issue.chat_link(), '<https://jira.example.com/browse/APP-100|APP-100>')

    def test_normalize_issue_minimal(self):
        issue = normalize_issue({'key': 'WEB-1'})
        self.assertEqual(issue.priority_id, 0)
        self.assertIsNone(issue.last_worklog_started)
        self.assertEqual(issue.chat_link(), 'WEB-1')

    def test_fix_version_dates(self):
        self.assertEqual(fix_version_date('app/20260325'), date(2026, 3, 25))
        self.assertIsNone(fix_version_date('app-1.2'))
        self.assertIsNone(fix_version_date('app/2026'))
        issue = Issue('APP-1', fix_versions=['app/20260401', 'hotfix/20260315', 'backlog'])
        self.assertEqual(nearest_fix_version_date(issue), date(2026, 3, 15))

    def test_parse_datetime_formats(self):
        expected = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)
        self.assertEqual(parse_datetime('2026-03-10T12:00:00.000+0300'), expected)
        self.assertEqual(parse_datetime('2026-03-10T09:00:00Z'), expected)
        self.assertEqual(parse_datetime('2026-03-10T09:00:00.123456+00:00'), expected + timedelta(microseconds=123456))
        self.assertIsNone(parse_datetime(''))

    def test_last_activity_from_feed(self):
        feed = [
            {'approval': {'date': '2026-03-01T10:00:00+00:00'}},
            {'update': {'date': '2026-03-03T10:00:00+00:00'}},
            {'comment': {'created_on': '2026-03-02T10:00:00+00:00'}},
        ]
        self.assertEqual(last_activity_from_feed(feed), datetime(2026, 3, 3, 10, 0, tzinfo=timezone.utc))
        self.assertIsNone(last_activity_from_feed([]))

    def test_pull_request_defaults_last_activity_to_updated_on(self):
        pr = normalize_pull_request({
            'id': 7,
            'title': 'Add checkout',
            'author': {'display_name': 'Dev One'},
            'source': {'branch': {'name': 'feature/checkout'}},
            'destination': {'branch': {'name': 'master'}},
            'updated_on': '2026-03-01T10:00:00+00:00',
        }, 'app')
        self.assertEqual(pr.last_activity_at, datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc))
        self.assertEqual((pr.source_branch, pr.destination_branch), ('feature/checkout', 'master'))

    def test_message_reactions(self):
        msg = normalize_message({'ts': '1.0', 'user': 'U1', 'reactions': [{'name': 'eyes', 'users': ['U2', 'U3']}]})
        self.assertEqual(msg.reacted_users(), {'U2', 'U3'})
        self.assertFalse(msg.is_from_bot())
        self.assertTrue(normalize_message({'ts': '1.0', 'bot_id': 'B1'}).is_from_bot())


def test_format_duration():
    assert format_duration(timedelta(days=1, hours=2, minutes=5)) == '1d02h05m'
    assert format_duration(2 * 3600 + 5 * 60) == '2h05m'
    assert format_duration(300) == '5m'


@pytest.mark.parametrize('value', [-1, timedelta(seconds=-60)])
def test_negative_durations_are_rejected(value):
    with pytest.raises(ValueError, match='time can not be less than zero'):
        format_duration(value)


if __name__ == '__main__':
    unittest.main()
