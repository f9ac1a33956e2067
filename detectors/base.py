"""
Common detector protocol.

A run loads the stored snapshot, fetches live data, computes the diff, dispatches grouped messages and
only then applies its store mutations. Errors raised by a run are logged at the task boundary
(__call__) and re-raised so the task manager records the failure.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from storage.errors import BotError
from taskmanager.manager import utc_now

logger = logging.getLogger(__name__)


class Detector:
    name = 'detector'

    def __init__(self, store, dispatcher, config, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.dispatcher = dispatcher
        self.config = config
        self.clock = clock or utc_now

    def run(self, stop_event: Optional[threading.Event] = None):
        raise NotImplementedError

    @staticmethod
    def cancelled(stop_event: Optional[threading.Event]) -> bool:
        return stop_event is not None and stop_event.is_set()

    def __call__(self, stop_event: Optional[threading.Event] = None):
        logger.debug("%s run started", self.name)
        try:
            self.run(stop_event)
        except BotError as ex:
            logger.error("%s run aborted: %s", self.name, ex)
            raise
        logger.debug("%s run finished", self.name)
