"""
Release bot: registered users browse the unreleased versions of the projects on their allow-list.

Updates are read by long polling. A failed update is logged and skipped; polling continues until
the stop event is set.
"""

import logging
import threading
from typing import Any, Dict, List, Optional

from ingest.telegram import PARSE_MODE_MARKDOWN
from models import RbAuth
from ports import IssueTracker, MessagingBot
from report.renderer import render_template
from storage.errors import BotError, NotFoundError
from taskmanager.manager import utc_now

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "Release bot.\n"
    "/reg - register to browse releases\n"
    "/releases - show unreleased versions of your projects"
)
ALREADY_REGISTERED = "You are already registered"
REGISTRATION_FAILED = "Registration failed, try again later"
REGISTERED = "You have been registered successfully, ask an administrator for project access"
NEED_REGISTRATION = "You need to be registered, send /reg"
NO_PROJECTS = "There are no projects available for you"
NO_RELEASES = "There are no unreleased versions"
ACCESS_DENIED = "project access denied"
INTERNAL_ERROR = "internal error"
SELECT_RELEASE = "Select release please"

POLL_TIMEOUT = 30
RETRY_DELAY = 5.0


def command_of(text: str) -> str:
    """'/releases@my_bot now' -> '/releases'."""
    if not text or not text.startswith('/'):
        return ''
    return text.split()[0].split('@')[0].lower()


class ReleaseBot:
    def __init__(self, bot: MessagingBot, store, tracker: IssueTracker, clock=None, poll_timeout: int = POLL_TIMEOUT):
        self.bot = bot
        self.store = store
        self.tracker = tracker
        self.clock = clock or utc_now
        self.poll_timeout = poll_timeout

    def run(self, stop_event: threading.Event):
        offset: Optional[int] = None
        logger.info("release bot polling started")
        while not stop_event.is_set():
            try:
                updates = self.bot.get_updates(offset, timeout=self.poll_timeout)
            except BotError as ex:
                logger.error("can't fetch updates: %s", ex)
                stop_event.wait(RETRY_DELAY)
                continue
            for update in updates:
                offset = int(update.get('update_id', 0)) + 1
                try:
                    self.handle_update(update)
                except BotError as ex:
                    logger.error("update %s failed: %s", update.get('update_id'), ex)
                except Exception:
                    logger.exception("update %s failed", update.get('update_id'))
        logger.info("release bot polling stopped")

    def handle_update(self, update: Dict[str, Any]):
        if update.get('callback_query'):
            self.handle_callback(update['callback_query'])
            return
        message = update.get('message') or {}
        chat_id = (message.get('chat') or {}).get('id')
        sender = message.get('from') or {}
        if chat_id is None or not sender.get('id'):
            return
        command = command_of(message.get('text') or '')
        if command == '/reg':
            self.register(chat_id, sender)
        elif command == '/releases':
            self.releases(chat_id, sender)
        elif command in ('/start', '/help'):
            self.bot.send_message(chat_id, HELP_TEXT)

    def register(self, chat_id: int, sender: Dict[str, Any]):
        try:
            self.store.get_rb_auth(sender['id'])
            self.bot.send_message(chat_id, ALREADY_REGISTERED)
            return
        except NotFoundError:
            pass
        auth = RbAuth(
            sender['id'],
            username=sender.get('username') or '',
            first_name=sender.get('first_name') or '',
            last_name=sender.get('last_name') or '',
            updated_at=self.clock(),
        )
        try:
            self.store.upsert_rb_auth(auth)
        except BotError as ex:
            logger.error("can't register %s: %s", sender['id'], ex)
            self.bot.send_message(chat_id, REGISTRATION_FAILED)
            return
        logger.info("release bot user %s registered", sender['id'])
        self.bot.send_message(chat_id, REGISTERED)

    def releases(self, chat_id: int, sender: Dict[str, Any]):
        try:
            auth = self.store.get_rb_auth(sender['id'])
        except NotFoundError:
            self.bot.send_message(chat_id, NEED_REGISTRATION)
            return
        if not auth.projects:
            self.bot.send_message(chat_id, NO_PROJECTS)
            return
        rows: List[List[Dict[str, str]]] = []
        for project in sorted(auth.projects):
            for version in self.tracker.list_unreleased_versions(project):
                rows.append([{"text": f"{project} {version.name}", "callback_data": version.id}])
        if not rows:
            self.bot.send_message(chat_id, NO_RELEASES)
            return
        self.bot.send_keyboard(chat_id, SELECT_RELEASE, rows)

    def release_status(self, version) -> str:
        total, unresolved = self.tracker.count_issues_for_version(version.id)
        resolved = max(total - unresolved, 0)
        return render_template(
            'release_status.md.j2',
            version=version,
            resolved=resolved,
            total=total,
            percent=resolved * 100 / total if total else 0,
        )

    def handle_callback(self, query: Dict[str, Any]):
        try:
            self.bot.answer_callback(query.get('id') or '')
        except BotError as ex:
            logger.error("can't acknowledge callback %s: %s", query.get('id'), ex)
        chat_id = (((query.get('message') or {}).get('chat')) or {}).get('id') or (query.get('from') or {}).get('id')
        try:
            auth = self.store.get_rb_auth((query.get('from') or {}).get('id') or 0)
        except NotFoundError:
            self.bot.send_message(chat_id, NEED_REGISTRATION)
            return
        except BotError as ex:
            logger.error("can't load release bot user %s: %s", (query.get('from') or {}).get('id'), ex)
            self.bot.send_message(chat_id, INTERNAL_ERROR)
            return
        try:
            version = self.tracker.get_version(query.get('data') or '')
            project = self.tracker.get_project(version.project_id)
            if not auth.has_project(project.get('key')):
                self.bot.send_message(chat_id, ACCESS_DENIED)
                return
            text = self.release_status(version)
        except BotError as ex:
            logger.error("release lookup for %r failed: %s", query.get('data'), ex)
            self.bot.send_message(chat_id, INTERNAL_ERROR)
            return
        self.bot.send_message(chat_id, text, parse_mode=PARSE_MODE_MARKDOWN)
