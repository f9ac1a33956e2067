import csv
import io
import unittest
from datetime import date, datetime, timezone

import pytest

from detectors.works_ratio import NO_DEVELOPER, WorksRatio, is_overrun, overrun_percent
from fakes import FakeChat, FakeTracker, drop_store, fixed_clock, make_config, make_dispatcher, make_store
from normalize.models import Issue
from report.renderer import WORKS_RATIO_HEADER

RESOLVED = datetime(2026, 3, 6, 15, 30, tzinfo=timezone.utc)


def closed(key, estimate, spent, developer='Dev One', type_name='BE Task', remaining=0):
    return Issue(
        key, type_name=type_name, developer_name=developer, original_estimate=estimate, time_spent=spent,
        remaining_estimate=remaining, resolution_date=RESOLVED, link=f"https://jira.example.com/browse/{key}",
    )


class TestWorksRatio(unittest.TestCase):
    def setUp(self):
        self.store, self.path = make_store()
        self.chat = FakeChat()

    def tearDown(self):
        drop_store(self.store, self.path)

    def detector(self, issues):
        self.tracker = FakeTracker(closed_issues=issues)
        return WorksRatio(self.tracker, self.store, make_dispatcher(self.chat), make_config(), clock=fixed_clock())

    def test_rows_are_filtered_and_sorted_by_overrun(self):
        rows = self.detector([]).rows([
            closed('APP-1', 7200, 14400),
            closed('APP-2', 36000, 40000, developer=''),
            closed('APP-3', 7200, 9000),
            closed('APP-4', 7200, 14400, type_name='Bug'),
            closed('APP-5', 7200, 14400, developer='Ignored Person'),
            closed('APP-6', 7200, 14400, remaining=600),
        ])
        self.assertEqual(rows, [
            [NO_DEVELOPER, '06.03.2026', 'https://jira.example.com/browse/APP-2', 'BE Task', 10.0, 11.11, 1.11, 11],
            ['Dev One', '06.03.2026', 'https://jira.example.com/browse/APP-1', 'BE Task', 2.0, 4.0, 2.0, 100],
        ])

    def test_sheet_is_sent_to_reports_channel(self):
        self.detector([closed('APP-1', 7200, 14400)]).run()
        self.assertEqual(self.tracker.closed_queries, [(date(2026, 3, 3), date(2026, 3, 10))])
        self.assertEqual(len(self.chat.files), 1)
        channel, data, content_type, filename = self.chat.files[0]
        self.assertEqual(channel, 'C-REP')
        self.assertEqual(content_type, 'text/csv')
        self.assertEqual(filename, 'works-ratio-2026-03-03-2026-03-10.csv')
        rows = list(csv.reader(io.StringIO(data.decode('utf-8'))))
        self.assertEqual(rows[0], WORKS_RATIO_HEADER)
        self.assertEqual(rows[1][:3], ['Dev One', '06.03.2026', 'https://jira.example.com/browse/APP-1'])

    def test_nothing_is_sent_without_overruns(self):
        self.detector([closed('APP-3', 7200, 9000)]).run()
        self.assertEqual(self.chat.files, [])


@pytest.mark.parametrize('estimate, spent, remaining, expected', [
    (0, 9000, 0, False),
    (50, 9000, 0, False),
    (7200, 14400, 60, False),
    (7200, 10800, 0, True),
    (7200, 10799, 0, False),
    (72000, 79199, 0, False),
    (72000, 79200, 0, True),
])
def test_is_overrun(estimate, spent, remaining, expected):
    issue = Issue('APP-1', original_estimate=estimate, time_spent=spent, remaining_estimate=remaining)
    assert is_overrun(issue) is expected


def test_overrun_percent():
    assert overrun_percent(Issue('APP-1', original_estimate=3600, time_spent=5400)) == pytest.approx(50.0)


if __name__ == '__main__':
    unittest.main()
