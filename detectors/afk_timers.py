"""
AfkTimerSweeper: removes AFK timers that have run out.
"""

import logging

from .base import Detector

logger = logging.getLogger(__name__)


class AfkTimerSweeper(Detector):
    name = 'afk_timers'

    def run(self, stop_event=None):
        now = self.clock()
        expired = [t for t in self.store.list_afk_timers() if not t.is_active(now)]
        with self.store.transaction():
            for timer in expired:
                self.store.delete_afk_timer(timer.user_id)
        if expired:
            logger.info("removed %d expired afk timers", len(expired))
