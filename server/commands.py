"""
Slash commands: protected names, AFK timers and vacations.
Every command returns the text to show to the invoking user.
"""

import logging
import re
from datetime import datetime, timedelta

from models import AfkTimer, ProtectedName, Vacation
from normalize.util import format_duration
from settings import mention
from storage.errors import NotFoundError
from taskmanager.manager import utc_now

logger = logging.getLogger(__name__)

AFK_DURATION_RE = re.compile(r'^(?:(\d+)h)?(?:(\d+)m)?$')
VACATION_DATE_FORMAT = '%d.%m.%Y'

USAGE = {
    '/protect': 'Usage: /protect <branch> [comment]',
    '/unprotect': 'Usage: /unprotect <branch>',
    '/skip': 'Usage: /skip <pull request title>',
    '/afk': 'Usage: /afk <1h30m|45m|2h> or /afk stop',
    '/vacation': 'Usage: /vacation <dd.mm.yyyy> <dd.mm.yyyy> [message], /vacation status or /vacation cancel',
}


def parse_afk_duration(value: str) -> timedelta:
    match = AFK_DURATION_RE.match(value.strip())
    if not match or not any(match.groups()):
        raise ValueError(f"can't parse duration {value!r}")
    hours, minutes = (int(g or 0) for g in match.groups())
    duration = timedelta(hours=hours, minutes=minutes)
    if duration <= timedelta(0):
        raise ValueError("duration must be positive")
    return duration


def parse_vacation_date(value: str):
    return datetime.strptime(value, VACATION_DATE_FORMAT).date()


class ChatCommands:
    def __init__(self, store, config, clock=None):
        self.store = store
        self.config = config
        self.clock = clock or utc_now
        self._handlers = {
            '/protect': self.protect,
            '/unprotect': self.unprotect,
            '/protected': self.protected,
            '/skip': self.skip,
            '/afk': self.afk,
            '/back': self.back,
            '/vacation': self.vacation,
        }

    def handle(self, command: str, text: str, user_id: str, channel_id: str = '') -> str:
        handler = self._handlers.get((command or '').strip())
        if handler is None:
            return f"Unknown command {command}"
        logger.debug("command %s %r from %s in %s", command, text, user_id, channel_id)
        return handler((text or '').strip(), user_id)

    def protect(self, text: str, user_id: str) -> str:
        if not text:
            return USAGE['/protect']
        parts = text.split(maxsplit=1)
        name, comment = parts[0], parts[1] if len(parts) > 1 else ''
        if not self.store.create_protected_name(ProtectedName(name, user_id, comment, self.clock())):
            return f"Branch `{name}` is already protected"
        return f"Branch `{name}` is protected"

    def unprotect(self, text: str, user_id: str) -> str:
        if not text:
            return USAGE['/unprotect']
        name = text.split()[0]
        if not self.store.delete_protected_name(name):
            return f"Branch `{name}` is not protected"
        return f"Branch `{name}` is no longer protected"

    def protected(self, text: str, user_id: str) -> str:
        items = self.store.list_protected_names()
        if not items:
            return "Protected branches not found"
        lines = []
        for item in items:
            line = f"`{item.name}` by {mention(item.user_id) or 'unknown user'}"
            if item.comment:
                line += f": {item.comment}"
            lines.append(line)
        return '\n'.join(lines)

    def skip(self, text: str, user_id: str) -> str:
        if not text:
            return USAGE['/skip']
        if not self.store.create_protected_name(ProtectedName(text, user_id, 'skipped pull request', self.clock())):
            return f"Pull request `{text}` is already skipped"
        return f"Pull request `{text}` will be skipped"

    def afk(self, text: str, user_id: str) -> str:
        if text == 'stop':
            return self.back('', user_id)
        try:
            duration = parse_afk_duration(text)
        except ValueError:
            return USAGE['/afk']
        self.store.upsert_afk_timer(AfkTimer(user_id, duration, self.clock()))
        return f"You are AFK for {format_duration(duration)}"

    def back(self, text: str, user_id: str) -> str:
        if not self.store.delete_afk_timer(user_id):
            return "AFK timer is not set"
        return "Welcome back"

    def vacation(self, text: str, user_id: str) -> str:
        if text == 'cancel':
            if not self.store.delete_vacation(user_id):
                return "You have no vacation planned"
            return "Vacation cancelled"
        if text == 'status':
            try:
                item = self.store.get_vacation(user_id)
            except NotFoundError:
                return "You have no vacation planned"
            return (
                f"Your vacation: {item.date_start.strftime(VACATION_DATE_FORMAT)} - "
                f"{item.date_end.strftime(VACATION_DATE_FORMAT)}"
            )
        parts = text.split(maxsplit=2)
        if len(parts) < 2:
            return USAGE['/vacation']
        try:
            start, end = parse_vacation_date(parts[0]), parse_vacation_date(parts[1])
        except ValueError:
            return USAGE['/vacation']
        try:
            item = Vacation(user_id, start, end, parts[2] if len(parts) > 2 else '')
        except ValueError:
            return "Vacation start date must not be after its end date"
        self.store.upsert_vacation(item)
        return (
            f"Vacation saved: {start.strftime(VACATION_DATE_FORMAT)} - {end.strftime(VACATION_DATE_FORMAT)}"
        )
