import unittest
from unittest import mock

from dispatcher import Dispatcher
from fakes import FakeChat
from storage.errors import InternalError, NotFoundError


class TestDispatcher(unittest.TestCase):
    def test_messages_reach_the_chat(self):
        chat = FakeChat()
        dispatcher = Dispatcher(chat, min_interval=0)
        dispatcher.send_message('C1', 'hello')
        dispatcher.send_to_thread('C1', '1.0', 'reply')
        dispatcher.send_file('C2', b'a,b', 'text/csv', 'report.csv')
        self.assertEqual(chat.sent, [('C1', None, 'hello'), ('C1', '1.0', 'reply')])
        self.assertEqual(chat.files, [('C2', b'a,b', 'text/csv', 'report.csv')])

    def test_empty_text_is_not_sent(self):
        chat = FakeChat()
        dispatcher = Dispatcher(chat, min_interval=0)
        dispatcher.send_message('C1', '')
        dispatcher.send_to_thread('C1', '1.0', '')
        self.assertEqual(chat.sent, [])

    def test_port_failures_become_internal_errors(self):
        dispatcher = Dispatcher(FakeChat(fail_on_send=True), min_interval=0)
        with self.assertRaises(InternalError):
            dispatcher.send_message('C1', 'hello')

    def test_bot_errors_pass_through(self):
        chat = mock.Mock()
        chat.message_permalink.side_effect = NotFoundError("message not found")
        with self.assertRaises(NotFoundError):
            Dispatcher(chat, min_interval=0).permalink('C1', '1.0')

    def test_posts_are_spaced(self):
        dispatcher = Dispatcher(FakeChat(), min_interval=1.0)
        with mock.patch('dispatcher.time.monotonic', side_effect=[100.0, 100.25, 101.0]), \
                mock.patch('dispatcher.time.sleep') as sleep:
            dispatcher.send_message('C1', 'one')
            dispatcher.send_message('C1', 'two')
        sleep.assert_called_once_with(0.75)


if __name__ == '__main__':
    unittest.main()
