import threading
import unittest
from unittest import mock

from fakes import NOW, FakeBot, FakeTracker, drop_store, fixed_clock, make_store
from ingest.telegram import PARSE_MODE_MARKDOWN
from models import RbAuth
from normalize.models import Version
from releasebot import ReleaseBot
from releasebot.bot import (
    ACCESS_DENIED,
    ALREADY_REGISTERED,
    HELP_TEXT,
    INTERNAL_ERROR,
    NEED_REGISTRATION,
    NO_PROJECTS,
    NO_RELEASES,
    REGISTERED,
    SELECT_RELEASE,
    command_of,
)
from storage.errors import InternalError, NotFoundError

USER = {'id': 501, 'username': 'pm', 'first_name': 'Project', 'last_name': 'Manager'}


def text_update(update_id, text, sender=USER):
    return {'update_id': update_id, 'message': {'chat': {'id': 9001}, 'from': sender, 'text': text}}


def callback_update(update_id, data, sender=USER):
    return {'update_id': update_id, 'callback_query': {
        'id': f"cb-{update_id}", 'from': sender, 'data': data, 'message': {'chat': {'id': 9001}},
    }}


class MissingVersionTracker(FakeTracker):
    def get_version(self, version_id):
        raise NotFoundError(f"version {version_id} not found")


class MalformedVersionTracker(FakeTracker):
    def get_version(self, version_id):
        raise AttributeError("'list' object has no attribute 'get'")


class StoppingBot(FakeBot):
    """Hands out its updates once, then stops the polling loop."""

    def __init__(self, updates, stop_event, fail_first=False):
        super().__init__(updates)
        self.stop_event = stop_event
        self.fail_first = fail_first
        self.offsets = []

    def get_updates(self, offset=None, timeout=60):
        self.offsets.append(offset)
        if self.fail_first:
            self.fail_first = False
            raise InternalError("telegram is unavailable")
        batch = super().get_updates(offset, timeout)
        if not batch:
            self.stop_event.set()
        return batch


class TestReleaseBot(unittest.TestCase):
    def setUp(self):
        self.store, self.path = make_store()
        self.bot = FakeBot()
        self.tracker = FakeTracker(
            versions={'100': Version('100', 'app/20260325', project_id='10', release_date='2026-03-25')},
            projects={'10': {'id': '10', 'key': 'APP'}},
            unreleased={
                'APP': [Version('100', 'app/20260325', project_id='10'), Version('101', 'app/20260401', project_id='10')],
                'WEB': [Version('200', 'web/20260330', project_id='20')],
            },
            counts={'100': (10, 4)},
        )
        self.release_bot = ReleaseBot(self.bot, self.store, self.tracker, clock=fixed_clock())

    def tearDown(self):
        drop_store(self.store, self.path)

    def replies(self):
        return [text for _, text, _ in self.bot.messages]

    def grant(self, *projects):
        self.store.upsert_rb_auth(RbAuth(USER['id'], projects=list(projects), updated_at=NOW))

    def test_registration(self):
        self.release_bot.handle_update(text_update(1, '/reg'))
        self.release_bot.handle_update(text_update(2, '/reg@release_bot'))
        self.assertEqual(self.replies(), [REGISTERED, ALREADY_REGISTERED])
        auth = self.store.get_rb_auth(USER['id'])
        self.assertEqual((auth.username, auth.first_name, auth.projects, auth.updated_at), ('pm', 'Project', [], NOW))

    def test_releases_require_registration_and_projects(self):
        self.release_bot.handle_update(text_update(1, '/releases'))
        self.release_bot.handle_update(text_update(2, '/reg'))
        self.release_bot.handle_update(text_update(3, '/releases'))
        self.assertEqual(self.replies(), [NEED_REGISTRATION, REGISTERED, NO_PROJECTS])

    def test_release_keyboard(self):
        self.grant('WEB', 'APP')
        self.release_bot.handle_update(text_update(1, '/releases'))
        self.assertEqual(self.bot.keyboards, [(9001, SELECT_RELEASE, [
            [{'text': 'APP app/20260325', 'callback_data': '100'}],
            [{'text': 'APP app/20260401', 'callback_data': '101'}],
            [{'text': 'WEB web/20260330', 'callback_data': '200'}],
        ])])

    def test_no_unreleased_versions(self):
        self.grant('OPS')
        self.release_bot.handle_update(text_update(1, '/releases'))
        self.assertEqual(self.replies(), [NO_RELEASES])

    def test_release_status(self):
        self.grant('APP')
        self.release_bot.handle_update(callback_update(1, '100'))
        self.assertEqual(self.bot.answered, ['cb-1'])
        self.assertEqual(self.bot.messages, [(9001, (
            "*app/20260325*\n\n"
            "Current status: unreleased\n\n"
            "Release date planned: 2026-03-25\n\n"
            "Issues resolved: 6 / 10 (60 %)"
        ), PARSE_MODE_MARKDOWN)])

    def test_callback_checks_registration_and_access(self):
        self.release_bot.handle_update(callback_update(1, '100'))
        self.grant('WEB')
        self.release_bot.handle_update(callback_update(2, '100'))
        self.assertEqual(self.replies(), [NEED_REGISTRATION, ACCESS_DENIED])
        self.assertEqual(self.bot.answered, ['cb-1', 'cb-2'])

    def test_callback_lookup_failure(self):
        self.grant('APP')
        release_bot = ReleaseBot(self.bot, self.store, MissingVersionTracker(), clock=fixed_clock())
        release_bot.handle_update(callback_update(1, '999'))
        self.assertEqual(self.replies(), [INTERNAL_ERROR])

    def test_callback_store_failure(self):
        with mock.patch.object(self.store, 'get_rb_auth', side_effect=InternalError("database is locked")):
            self.release_bot.handle_update(callback_update(1, '100'))
        self.assertEqual(self.bot.answered, ['cb-1'])
        self.assertEqual(self.replies(), [INTERNAL_ERROR])

    def test_help_and_plain_text(self):
        self.release_bot.handle_update(text_update(1, '/start'))
        self.release_bot.handle_update(text_update(2, 'hello'))
        self.assertEqual(self.replies(), [HELP_TEXT])

    def test_polling_loop_advances_offset(self):
        stop = threading.Event()
        bot = StoppingBot([text_update(7, '/help'), text_update(8, '/reg')], stop, fail_first=True)
        release_bot = ReleaseBot(bot, self.store, self.tracker, clock=fixed_clock())
        with mock.patch('releasebot.bot.RETRY_DELAY', 0):
            release_bot.run(stop)
        self.assertEqual(bot.offsets, [None, None, 9])
        self.assertEqual([text for _, text, _ in bot.messages], [HELP_TEXT, REGISTERED])

    def test_polling_survives_unexpected_errors(self):
        self.grant('APP')
        stop = threading.Event()
        bot = StoppingBot([callback_update(7, '100'), text_update(8, '/help')], stop)
        release_bot = ReleaseBot(bot, self.store, MalformedVersionTracker(), clock=fixed_clock())
        with self.assertLogs('releasebot.bot', level='ERROR'):
            release_bot.run(stop)
        self.assertEqual(bot.offsets, [None, 9])
        self.assertEqual(bot.answered, ['cb-7'])
        self.assertEqual([text for _, text, _ in bot.messages], [HELP_TEXT])


class TestCommandOf(unittest.TestCase):
    def test_command_of(self):
        self.assertEqual(command_of('/Releases@release_bot now'), '/releases')
        self.assertEqual(command_of('releases'), '')
        self.assertEqual(command_of(''), '')


if __name__ == '__main__':
    unittest.main()
