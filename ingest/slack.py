"""
Slack adapter for the Chat port, built on slack_sdk's WebClient.
Cursor pagination is followed by iterating the SlackResponse; rate-limited calls are retried
by the SDK's RateLimitErrorRetryHandler. SlackApiError is reported as InternalError.
"""

import logging
from datetime import datetime
from typing import List, Optional

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError
from slack_sdk.http_retry.builtin_handlers import RateLimitErrorRetryHandler

from normalize.models import Channel, ChatMessage
from normalize.util import normalize_channel, normalize_message
from storage.errors import InternalError

logger = logging.getLogger(__name__)


def _slack_ts(value: datetime) -> str:
    return f"{value.timestamp():.6f}"


class SlackChat:
    """Chat port implementation. Reads use the user token when given, writes use the bot token."""

    def __init__(self, out_token: str, in_token: Optional[str] = None, max_retry_count: int = 3, client: Optional[WebClient] = None, reader: Optional[WebClient] = None):
        self.client = client or WebClient(token=out_token)
        self.reader = reader or (WebClient(token=in_token) if in_token else self.client)
        self.client.retry_handlers.append(RateLimitErrorRetryHandler(max_retry_count=max_retry_count))
        if self.reader is not self.client:
            self.reader.retry_handlers.append(RateLimitErrorRetryHandler(max_retry_count=max_retry_count))

    @staticmethod
    def _fail(action: str, ex: SlackApiError):
        error = ex.response.get('error') if getattr(ex, 'response', None) is not None else str(ex)
        logger.error("slack %s failed: %s", action, error)
        return InternalError(f"slack {action} failed: {error}")

    def list_channels(self) -> List[Channel]:
        """Public, non-archived channels with their member ids."""
        channels: List[Channel] = []
        try:
            for page in self.reader.conversations_list(types='public_channel', exclude_archived=True, limit=200):
                for raw in page.get('channels', []):
                    members = []
                    if raw.get('num_members', 0) > 0:
                        for member_page in self.reader.conversations_members(channel=raw['id'], limit=500):
                            members.extend(member_page.get('members', []))
                    channels.append(normalize_channel(raw, members))
        except SlackApiError as ex:
            raise self._fail('conversations.list', ex) from ex
        return channels

    def channel_history(self, channel_id: str, oldest: datetime, latest: datetime) -> List[ChatMessage]:
        """Messages with oldest <= ts < latest."""
        messages: List[ChatMessage] = []
        try:
            for page in self.reader.conversations_history(channel=channel_id, oldest=_slack_ts(oldest), latest=_slack_ts(latest), inclusive=True, limit=200):
                messages.extend(normalize_message(m) for m in page.get('messages', []))
        except SlackApiError as ex:
            raise self._fail('conversations.history', ex) from ex
        latest_ts = latest.timestamp()
        return [m for m in messages if float(m.ts or 0) < latest_ts]

    def channel_message(self, channel_id: str, ts: str) -> Optional[ChatMessage]:
        try:
            resp = self.reader.conversations_history(channel=channel_id, latest=ts, oldest=ts, inclusive=True, limit=1)
        except SlackApiError as ex:
            raise self._fail('conversations.history', ex) from ex
        found = resp.get('messages', [])
        return normalize_message(found[0]) if found else None

    def thread_replies(self, channel_id: str, ts: str) -> List[ChatMessage]:
        """Replies of a thread in posting order, without the parent message."""
        replies: List[ChatMessage] = []
        try:
            for page in self.reader.conversations_replies(channel=channel_id, ts=ts, limit=200):
                replies.extend(normalize_message(m) for m in page.get('messages', []))
        except SlackApiError as ex:
            raise self._fail('conversations.replies', ex) from ex
        return [r for r in replies if r.ts != ts]

    def message_permalink(self, channel_id: str, ts: str) -> str:
        try:
            return self.reader.chat_getPermalink(channel=channel_id, message_ts=ts).get('permalink', '')
        except SlackApiError as ex:
            raise self._fail('chat.getPermalink', ex) from ex

    def send_message(self, channel_id: str, text: str) -> None:
        try:
            self.client.chat_postMessage(channel=channel_id, text=text)
        except SlackApiError as ex:
            raise self._fail('chat.postMessage', ex) from ex

    def send_to_thread(self, channel_id: str, thread_ts: str, text: str) -> None:
        try:
            self.client.chat_postMessage(channel=channel_id, thread_ts=thread_ts, text=text)
        except SlackApiError as ex:
            raise self._fail('chat.postMessage', ex) from ex

    def send_file(self, channel_id: str, data: bytes, content_type: str, filename: str) -> None:
        logger.debug("uploading %s (%s, %d bytes) to %s", filename, content_type, len(data), channel_id)
        try:
            self.client.files_upload_v2(channel=channel_id, file=data, filename=filename, title=filename)
        except SlackApiError as ex:
            raise self._fail('files.upload', ex) from ex
