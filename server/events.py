"""
Chat events: request signature verification and the AFK/vacation auto-reply.
"""

import hashlib
import hmac
import logging
import time
from typing import Callable, Dict, List, Optional

from detectors.mention_reply import mentioned_ids
from normalize.util import format_duration
from storage.errors import BotError, NotFoundError
from taskmanager.manager import utc_now

logger = logging.getLogger(__name__)

SIGNATURE_VERSION = 'v0'
MAX_REQUEST_AGE = 300
UNKNOWN_NAME = 'This user'


class SlackSignature:
    """Verifies X-Slack-Signature over 'v0:{timestamp}:{body}'. Without a secret every request passes."""

    def __init__(self, signing_secret: Optional[str], clock: Callable[[], float] = time.time):
        self.signing_secret = signing_secret or ''
        self.clock = clock

    def verify(self, body: bytes, timestamp: Optional[str], signature: Optional[str]) -> bool:
        if not self.signing_secret:
            return True
        if not signature or not timestamp:
            return False
        try:
            ts = int(timestamp)
        except ValueError:
            return False
        if abs(self.clock() - ts) > MAX_REQUEST_AGE:
            return False
        base = f"{SIGNATURE_VERSION}:{timestamp}:{body.decode('utf-8')}"
        expected = f"{SIGNATURE_VERSION}=" + hmac.new(
            self.signing_secret.encode('utf-8'), base.encode('utf-8'), hashlib.sha256
        ).hexdigest()
        return hmac.compare_digest(expected, signature)


class AwayAutoReply:
    def __init__(self, store, dispatcher, config, clock=None):
        self.store = store
        self.dispatcher = dispatcher
        self.config = config
        self.clock = clock or utc_now

    def replies_for(self, text: str) -> List[str]:
        """One line per mentioned user who is AFK or on vacation right now."""
        now = self.clock()
        lines = []
        for user_id in sorted(mentioned_ids(text)):
            name = self.config.users.real_name(user_id, UNKNOWN_NAME)
            try:
                timer = self.store.get_afk_timer(user_id)
            except NotFoundError:
                timer = None
            if timer is not None and timer.is_active(now):
                lines.append(f"*{name}* will return in {format_duration(timer.remaining(now))}")
                continue
            try:
                vacation = self.store.get_vacation(user_id)
            except NotFoundError:
                continue
            if vacation.covers(now.date()):
                lines.append(
                    f"*{name}* is on vacation until {vacation.date_end.strftime('%d.%m.%Y')}, "
                    f"their message is: \n\n'{vacation.message}'"
                )
        return lines

    def handle_message(self, event: Dict):
        if event.get('bot_id') or event.get('subtype') or event.get('user') in self.config.bot_ids:
            return
        channel = event.get('channel')
        thread_ts = event.get('thread_ts') or event.get('ts')
        if not channel or not thread_ts:
            return
        try:
            for line in self.replies_for(event.get('text') or ''):
                self.dispatcher.send_to_thread(channel, thread_ts, line)
        except BotError as ex:
            logger.error("auto-reply in %s failed: %s", channel, ex)
