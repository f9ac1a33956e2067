import unittest
from datetime import date, timedelta

from detectors.afk_timers import AfkTimerSweeper
from detectors.less_worked import LessWorked
from fakes import NOW, FakeChat, FakeTimeTracker, drop_store, fixed_clock, make_config, make_dispatcher, make_store
from models import AfkTimer

HOUR = 3600


def member(name, email, hours):
    return {'name': name, 'email': email, 'duration': int(hours * HOUR)}


class TestLessWorked(unittest.TestCase):
    def setUp(self):
        self.store, self.path = make_store()
        self.chat = FakeChat()

    def tearDown(self):
        drop_store(self.store, self.path)

    def run_detector(self, users):
        self.tracker = FakeTimeTracker([{'id': 42, 'name': 'Example', 'users': users}])
        LessWorked(self.tracker, self.store, make_dispatcher(self.chat), make_config(), clock=fixed_clock()).run()
        return [text for _, _, text in self.chat.sent]

    def test_short_days_are_reported_per_team(self):
        sent = self.run_detector([
            member('Dev One', 'dev@example.com', 5),
            member('Backend Two', 'be2@example.com', 7),
            member('Front One', 'fe@example.com', 2.5),
        ])
        self.assertEqual(self.tracker.queries, [(date(2026, 3, 9), date(2026, 3, 9), 42)])
        self.assertEqual(sent, [
            "<@UD> worked less than 6 hours\nfyi <@UTLB> <@UPM>",
            "<@UF> worked less than 6 hours\nfyi <@UTLF> <@UPM>",
        ])

    def test_unknown_email_falls_back_to_tracker_name(self):
        sent = self.run_detector([member('Backend Two', 'other@example.com', 1)])
        self.assertEqual(sent, ["Backend Two worked less than 6 hours\nfyi <@UTLB> <@UPM>"])

    def test_other_teams_and_ignored_users_are_not_reported(self):
        sent = self.run_detector([
            member('Artist One', 'art@example.com', 1),
            member('Ignored Person', 'ignored@example.com', 1),
            member('Contractor', 'contractor@example.com', 1),
        ])
        self.assertEqual(sent, [])

    def test_full_days_are_quiet(self):
        self.assertEqual(self.run_detector([member('Dev One', 'dev@example.com', 6)]), [])


class TestAfkTimerSweeper(unittest.TestCase):
    def setUp(self):
        self.store, self.path = make_store()

    def tearDown(self):
        drop_store(self.store, self.path)

    def test_expired_timers_are_removed(self):
        self.store.upsert_afk_timer(AfkTimer('U1', timedelta(hours=1), NOW - timedelta(hours=2)))
        self.store.upsert_afk_timer(AfkTimer('U2', timedelta(hours=3), NOW - timedelta(hours=2)))
        AfkTimerSweeper(self.store, make_dispatcher(FakeChat()), make_config(), clock=fixed_clock()).run()
        self.assertEqual([t.user_id for t in self.store.list_afk_timers()], ['U2'])


if __name__ == '__main__':
    unittest.main()
