"""
Cron-driven task manager.

Each job runs on its own worker thread. At most one invocation of a job runs at a time and at most one
more waits behind it; further firings are dropped and counted. Stopping sets the shared event passed to
every job, discards queued invocations and joins the threads.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from croniter import croniter

logger = logging.getLogger(__name__)

JobFn = Callable[[threading.Event], None]

DEFAULT_TICK = 1.0


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _Job:
    def __init__(self, name: str, spec: str, fn: JobFn):
        self.name = name
        self.spec = spec
        self.fn = fn
        self.lock = threading.Lock()
        self.idle = threading.Condition(self.lock)
        self.running = 0
        self.queued = 0
        self.dropped = 0
        self.runs = 0
        self.failures = 0
        self.next_fire: Optional[datetime] = None
        self.worker: Optional[threading.Thread] = None

    def schedule_after(self, base: datetime):
        self.next_fire = croniter(self.spec, base).get_next(datetime)


class TaskManager:
    def __init__(self, clock: Optional[Callable[[], datetime]] = None, tick: float = DEFAULT_TICK):
        self.clock = clock or utc_now
        self.tick = tick
        self._jobs: Dict[str, _Job] = {}
        self._stop = threading.Event()
        self._scheduler: Optional[threading.Thread] = None

    @property
    def stop_event(self) -> threading.Event:
        return self._stop

    def schedule(self, name: str, spec: str, fn: JobFn):
        """Register fn under name with a five-field cron expression."""
        if name in self._jobs:
            raise ValueError(f"job {name} is already scheduled")
        if not croniter.is_valid(spec):
            raise ValueError(f"invalid schedule for {name}: {spec!r}")
        self._jobs[name] = _Job(name, spec, fn)
        logger.debug("scheduled %s at %r", name, spec)

    def jobs(self) -> List[str]:
        return sorted(self._jobs)

    def _job(self, name: str) -> _Job:
        try:
            return self._jobs[name]
        except KeyError:
            raise KeyError(f"unknown job {name}") from None

    def trigger(self, name: str) -> bool:
        """Fire a job now. Returns False when the firing was dropped."""
        job = self._job(name)
        if self._stop.is_set():
            return False
        with job.lock:
            if job.running == 0:
                job.running = 1
                job.worker = threading.Thread(target=self._work, args=(job,), name=f"job-{name}", daemon=True)
                job.worker.start()
                return True
            if job.queued == 0:
                job.queued = 1
                return True
            job.dropped += 1
            logger.warning("job %s is busy, firing dropped (%d so far)", name, job.dropped)
            return False

    def _work(self, job: _Job):
        while True:
            logger.debug("job %s started", job.name)
            try:
                job.fn(self._stop)
            except Exception:
                logger.exception("job %s failed", job.name)
                with job.lock:
                    job.failures += 1
            else:
                logger.debug("job %s finished", job.name)
            with job.lock:
                job.runs += 1
                if job.queued and not self._stop.is_set():
                    job.queued = 0
                    continue
                job.queued = 0
                job.running = 0
                job.idle.notify_all()
                return

    def wait_idle(self, name: str, timeout: Optional[float] = None) -> bool:
        """Block until the job has neither a running nor a queued invocation."""
        job = self._job(name)
        with job.lock:
            return job.idle.wait_for(lambda: job.running == 0 and job.queued == 0, timeout)

    def run_once(self, name: str):
        """Run a job on a worker thread under the single-flight rule and block until it is idle."""
        if not self.trigger(name):
            raise RuntimeError(f"job {name} is already running")
        self.wait_idle(name)

    def stats(self) -> Dict[str, Dict[str, int]]:
        result = {}
        for name, job in self._jobs.items():
            with job.lock:
                result[name] = {
                    'runs': job.runs,
                    'dropped': job.dropped,
                    'failures': job.failures,
                    'running': job.running,
                    'queued': job.queued,
                }
        return result

    def _loop(self):
        now = self.clock()
        for job in self._jobs.values():
            job.schedule_after(now)
        while not self._stop.is_set():
            now = self.clock()
            for job in self._jobs.values():
                if job.next_fire is not None and job.next_fire <= now:
                    self.trigger(job.name)
                    job.schedule_after(now)
            pending = [j.next_fire for j in self._jobs.values() if j.next_fire is not None]
            wait = self.tick
            if pending:
                wait = max(0.0, min(wait, (min(pending) - now).total_seconds()))
            self._stop.wait(wait)

    def start(self):
        if self._scheduler is not None:
            return
        self._scheduler = threading.Thread(target=self._loop, name='taskmanager', daemon=True)
        self._scheduler.start()
        logger.info("task manager started with %d jobs", len(self._jobs))

    def stop(self, timeout: Optional[float] = None):
        self._stop.set()
        if self._scheduler is not None:
            self._scheduler.join(timeout)
        for job in self._jobs.values():
            with job.lock:
                job.queued = 0
                worker = job.worker
            if worker is not None and worker is not threading.current_thread():
                worker.join(timeout)
        logger.info("task manager stopped")
