"""
MentionReply: nudges people who were mentioned a day ago and neither replied nor reacted.
Mentions of AFK or vacationing users become reminders, released by the ReminderEngine at the end of the run.
"""

import logging
import re
from datetime import timedelta
from typing import Dict, List, Set, Tuple

from models import Reminder
from ports import Chat
from settings import mention

from .base import Detector
from .reminders import ReminderEngine, unavailable_user_ids

logger = logging.getLogger(__name__)

CHANNEL_MENTION = '<!channel>'
USER_MENTION_RE = re.compile(r'<@([A-Za-z0-9]+)(?:\|[^>]*)?>')

WINDOW_START = timedelta(hours=24)
WINDOW_END = timedelta(hours=23)


def mentioned_ids(text: str) -> Set[str]:
    return set(USER_MENTION_RE.findall(text or ''))


class MentionReply(Detector):
    name = 'mention_reply'

    def __init__(self, chat: Chat, store, dispatcher, config, clock=None, reminders: ReminderEngine = None):
        super().__init__(store, dispatcher, config, clock)
        self.chat = chat
        self.reminders = reminders or ReminderEngine(chat, store, dispatcher, config, clock=self.clock)

    def human_replies(self, channel_id: str, message) -> List:
        if not message.reply_count:
            return []
        bot_ids = set(self.config.bot_ids)
        return [
            r for r in self.chat.thread_replies(channel_id, message.ts)
            if not r.is_from_bot() and r.user not in bot_ids
        ]

    def scan_message(self, channel, members: Set[str], message, unavailable: Set[str]):
        """Return (thread replies to post, reminders to store) for one anchor message."""
        posts: List[Tuple[str, str, str]] = []
        reminders: List[Reminder] = []
        replies = self.human_replies(channel.id, message)

        if CHANNEL_MENTION in message.text:
            responded = message.reacted_users() | {r.user for r in replies} | {message.user}
            present = []
            for user in sorted(members - responded):
                if user in unavailable:
                    reminders.append(Reminder(user, channel.id, message.ts, message.reply_count, f"{mention(user)} ^"))
                else:
                    present.append(mention(user))
            if present:
                posts.append((channel.id, message.ts, ' '.join(present) + ' ^'))
            return posts, reminders

        if message.is_from_bot() or message.user in self.config.bot_ids:
            return posts, reminders

        waiting: Dict[str, str] = {}
        reacted = message.reacted_users()
        for user in mentioned_ids(message.text) & members:
            if user not in reacted:
                waiting[user] = message.ts
        for reply in replies:
            waiting.pop(reply.user, None)
            reacted = reply.reacted_users()
            for user in mentioned_ids(reply.text) & members:
                if user not in reacted:
                    waiting[user] = reply.ts

        by_link: Dict[str, List[str]] = {}
        for user, ts in sorted(waiting.items()):
            link = self.dispatcher.permalink(channel.id, ts)
            if user in unavailable:
                reminders.append(Reminder(user, channel.id, message.ts, message.reply_count, f"{mention(user)} {link}"))
            else:
                by_link.setdefault(link, []).append(mention(user))
        for link, users in by_link.items():
            posts.append((channel.id, message.ts, f"{' '.join(users)} {link}"))
        return posts, reminders

    def run(self, stop_event=None):
        now = self.clock()
        oldest, latest = now - WINDOW_START, now - WINDOW_END
        unavailable = unavailable_user_ids(self.store, now)
        bot_ids = set(self.config.bot_ids)

        posts: List[Tuple[str, str, str]] = []
        reminders: List[Reminder] = []
        for channel in self.chat.list_channels():
            if self.cancelled(stop_event):
                return
            if not channel.is_actual():
                continue
            members = set(channel.members) - bot_ids
            if not members:
                continue
            for message in self.chat.channel_history(channel.id, oldest, latest):
                found_posts, found_reminders = self.scan_message(channel, members, message, unavailable)
                posts.extend(found_posts)
                reminders.extend(found_reminders)

        for channel_id, thread_ts, text in posts:
            if self.cancelled(stop_event):
                return
            self.dispatcher.send_to_thread(channel_id, thread_ts, text)

        with self.store.transaction():
            for reminder in reminders:
                reminder.created_at = now
                self.store.create_reminder(reminder)
        logger.info("mention reply: %d nudges, %d reminders queued", len(posts), len(reminders))

        self.reminders.release(stop_event)
