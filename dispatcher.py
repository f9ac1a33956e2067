"""
Dispatcher: the single choke-point for chat side effects.
Safe for concurrent use; posts are spaced by a minimum interval and port failures surface as InternalError.
"""

import logging
import threading
import time
from typing import Optional

from ports import Chat
from storage.errors import BotError, InternalError

logger = logging.getLogger(__name__)

DEFAULT_MIN_INTERVAL = 1.0


class Dispatcher:
    def __init__(self, chat: Chat, min_interval: float = DEFAULT_MIN_INTERVAL):
        self.chat = chat
        self.min_interval = float(min_interval)
        self._lock = threading.Lock()
        self._last_post: Optional[float] = None

    def _throttle(self):
        if self._last_post is not None and self.min_interval > 0:
            wait = self._last_post + self.min_interval - time.monotonic()
            if wait > 0:
                time.sleep(wait)
        self._last_post = time.monotonic()

    def _post(self, action: str, fn, *args):
        with self._lock:
            self._throttle()
            try:
                return fn(*args)
            except BotError:
                raise
            except Exception as ex:
                logger.error("chat %s failed: %s", action, ex)
                raise InternalError(f"chat {action} failed: {ex}") from ex

    def send_message(self, channel: str, text: str):
        if not text:
            return
        logger.debug("send message to %s: %.100s", channel, text)
        self._post('send_message', self.chat.send_message, channel, text)

    def send_to_thread(self, channel: str, thread_ts: str, text: str):
        if not text:
            return
        logger.debug("send to thread %s/%s: %.100s", channel, thread_ts, text)
        self._post('send_to_thread', self.chat.send_to_thread, channel, thread_ts, text)

    def send_file(self, channel: str, data: bytes, content_type: str, filename: str):
        self._post('send_file', self.chat.send_file, channel, data, content_type, filename)

    def permalink(self, channel: str, ts: str) -> str:
        try:
            return self.chat.message_permalink(channel, ts)
        except BotError:
            raise
        except Exception as ex:
            raise InternalError(f"chat permalink failed: {ex}") from ex
