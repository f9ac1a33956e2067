"""
Telegram Bot API client backing the MessagingBot port (long polling via getUpdates).
"""

import logging
from typing import Any, Dict, List, Optional

from ingest.retry import request_with_retries
from storage.errors import InternalError

logger = logging.getLogger(__name__)

PARSE_MODE_MARKDOWN = 'Markdown'
MAX_MESSAGE_LENGTH = 4096


class TelegramClient:
    def __init__(self, api_key: str, base_url: Optional[str] = None):
        self.api_key = api_key
        self.base_url = (base_url or 'https://api.telegram.org').rstrip('/')

    def _call(self, method: str, payload: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> Any:
        url = f"{self.base_url}/bot{self.api_key}/{method}"
        res = request_with_retries('POST', url, json=payload or {}, timeout=timeout)
        body = res.get('response') or {}
        if res.get('status') != 200 or not isinstance(body, dict) or not body.get('ok'):
            description = body.get('description') if isinstance(body, dict) else body
            logger.error("telegram %s failed with %s: %s", method, res.get('status'), description)
            raise InternalError(f"telegram {method} failed: {description}")
        return body.get('result')

    def get_updates(self, offset: Optional[int] = None, timeout: int = 60) -> List[Dict[str, Any]]:
        payload: Dict[str, Any] = {"timeout": timeout, "allowed_updates": ["message", "callback_query"]}
        if offset is not None:
            payload["offset"] = offset
        return self._call('getUpdates', payload, timeout=timeout + 10) or []

    def send_message(self, chat_id: int, text: str, parse_mode: Optional[str] = None) -> None:
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text[:MAX_MESSAGE_LENGTH], "disable_web_page_preview": True}
        if parse_mode:
            payload["parse_mode"] = parse_mode
        self._call('sendMessage', payload)

    def send_keyboard(self, chat_id: int, text: str, rows: List[List[Dict[str, str]]]) -> None:
        """Send text with an inline keyboard; each button is {'text', 'callback_data'}."""
        self._call('sendMessage', {"chat_id": chat_id, "text": text, "reply_markup": {"inline_keyboard": rows}})

    def answer_callback(self, callback_query_id: str, text: str = '') -> None:
        payload: Dict[str, Any] = {"callback_query_id": callback_query_id, "show_alert": False}
        if text:
            payload["text"] = text[:200]
        self._call('answerCallbackQuery', payload)
