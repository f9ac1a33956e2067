"""
Reminder engine: mentions of AFK or vacationing users are stored and released once the user is back.
"""

import logging
from datetime import datetime
from typing import List, Set

from models import Reminder
from ports import Chat

from .base import Detector

logger = logging.getLogger(__name__)


def unavailable_user_ids(store, now: datetime) -> Set[str]:
    """Users with an active AFK timer or a vacation covering today."""
    users = {timer.user_id for timer in store.list_afk_timers() if timer.is_active(now)}
    users.update(vacation.user_id for vacation in store.get_active_vacations(now))
    return users


def replies_since_capture(reminder: Reminder, replies: List) -> List:
    # reply_count == 0 means nothing was captured, so every reply is new
    if reminder.reply_count > 0:
        return replies[reminder.reply_count - 1:]
    return replies


class ReminderEngine(Detector):
    name = 'reminders'

    def __init__(self, chat: Chat, store, dispatcher, config, clock=None):
        super().__init__(store, dispatcher, config, clock)
        self.chat = chat

    @staticmethod
    def answered(reminder: Reminder, replies: List) -> bool:
        for reply in replies:
            if reply.user == reminder.user_id:
                return True
        return False

    def release(self, stop_event=None) -> int:
        """Deliver the reminders of users who are back. Each reminder is attempted once, then deleted."""
        now = self.clock()
        unavailable = unavailable_user_ids(self.store, now)
        delivered = 0
        for reminder in self.store.list_pending_reminders():
            if self.cancelled(stop_event):
                break
            if reminder.user_id in unavailable:
                continue
            try:
                replies = self.chat.thread_replies(reminder.channel_id, reminder.thread_ts)
                if self.answered(reminder, replies_since_capture(reminder, replies)):
                    logger.debug("reminder %s answered by %s", reminder.id, reminder.user_id)
                else:
                    self.dispatcher.send_to_thread(reminder.channel_id, reminder.thread_ts, reminder.message)
                    delivered += 1
            finally:
                self.store.delete_reminder(reminder.id)
        return delivered

    def run(self, stop_event=None):
        delivered = self.release(stop_event)
        logger.info("reminders delivered: %d", delivered)
