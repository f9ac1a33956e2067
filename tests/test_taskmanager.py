import threading
import time
import unittest
from datetime import datetime, timedelta, timezone

from detectors.base import Detector
from storage.errors import InternalError
from taskmanager import TaskManager


class SteppingClock:
    """Returns first on the first reading and later afterwards."""

    def __init__(self, first, later):
        self.first = first
        self.later = later
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.first if self.calls == 1 else self.later


class TestSingleFlight(unittest.TestCase):
    def test_burst_runs_once_more_and_drops_the_rest(self):
        release = threading.Event()
        calls = []

        def job(stop):
            calls.append(time.monotonic())
            release.wait(5)

        manager = TaskManager()
        manager.schedule('job', '* * * * *', job)
        results = [manager.trigger('job') for _ in range(5)]
        self.assertEqual(results, [True, True, False, False, False])
        stats = manager.stats()['job']
        self.assertEqual((stats['running'], stats['queued'], stats['dropped']), (1, 1, 3))

        release.set()
        self.assertTrue(manager.wait_idle('job', timeout=5))
        stats = manager.stats()['job']
        self.assertEqual(stats['runs'], 2)
        self.assertEqual(len(calls), 2)
        self.assertEqual((stats['running'], stats['queued']), (0, 0))

    def test_failure_releases_the_slot(self):
        def job(stop):
            raise RuntimeError("boom")

        manager = TaskManager()
        manager.schedule('job', '0 * * * *', job)
        with self.assertLogs('taskmanager.manager', level='ERROR'):
            self.assertTrue(manager.trigger('job'))
            self.assertTrue(manager.wait_idle('job', timeout=5))
        self.assertEqual(manager.stats()['job']['failures'], 1)
        self.assertTrue(manager.trigger('job'))
        manager.wait_idle('job', timeout=5)
        self.assertEqual(manager.stats()['job']['runs'], 2)

    def test_run_once_is_synchronous(self):
        seen = []
        manager = TaskManager()
        manager.schedule('job', '0 * * * *', lambda stop: seen.append(stop))
        manager.run_once('job')
        self.assertEqual(len(seen), 1)
        self.assertIs(seen[0], manager.stop_event)

    def test_detector_failure_is_counted(self):
        class BrokenDetector(Detector):
            name = 'broken'

            def run(self, stop_event=None):
                raise InternalError("chat is unavailable")

        manager = TaskManager()
        manager.schedule('broken', '0 * * * *', BrokenDetector(None, None, None))
        with self.assertLogs('detectors.base', level='ERROR'):
            manager.run_once('broken')
        stats = manager.stats()['broken']
        self.assertEqual((stats['runs'], stats['failures'], stats['running']), (1, 1, 0))


class TestScheduling(unittest.TestCase):
    def test_invalid_and_duplicate_schedules(self):
        manager = TaskManager()
        with self.assertRaises(ValueError):
            manager.schedule('bad', 'every minute', lambda stop: None)
        manager.schedule('job', '*/5 * * * *', lambda stop: None)
        with self.assertRaises(ValueError):
            manager.schedule('job', '* * * * *', lambda stop: None)
        self.assertEqual(manager.jobs(), ['job'])

    def test_scheduler_fires_due_job(self):
        start = datetime(2026, 3, 10, 12, 0, 30, tzinfo=timezone.utc)
        clock = SteppingClock(start, start + timedelta(minutes=2))
        ran = threading.Event()
        manager = TaskManager(clock=clock, tick=0.01)
        manager.schedule('job', '* * * * *', lambda stop: ran.set())
        manager.start()
        try:
            self.assertTrue(ran.wait(5))
        finally:
            manager.stop(timeout=5)
        self.assertEqual(manager.stats()['job']['runs'], 1)

    def test_stop_discards_queued_and_signals_running(self):
        started = threading.Event()

        def job(stop):
            started.set()
            stop.wait(5)

        manager = TaskManager()
        manager.schedule('job', '0 * * * *', job)
        manager.trigger('job')
        manager.trigger('job')
        self.assertTrue(started.wait(5))
        manager.stop(timeout=5)
        stats = manager.stats()['job']
        self.assertEqual((stats['runs'], stats['running'], stats['queued']), (1, 0, 0))
        self.assertFalse(manager.trigger('job'))


if __name__ == '__main__':
    unittest.main()
