"""
ForgottenPullRequests: open pull requests without recent activity.
Aging uses both the pull request's last activity and the first time it was seen idle.
"""

import logging
from datetime import timedelta
from typing import Dict, List

from models import ATTENTION_BUCKETS, BUCKET_FIRST, BUCKET_SECOND, BUCKET_THIRD, ForgottenPullRequest
from normalize.util import last_activity_from_feed
from ports import SourceHost
from report.renderer import render_bucket

from .base import Detector

logger = logging.getLogger(__name__)

FRESH_ACTIVITY = timedelta(days=5)
SECOND_NOTICE_ACTIVITY = timedelta(days=7)
SECOND_NOTICE_SEEN = timedelta(days=2)
THIRD_NOTICE_ACTIVITY = timedelta(days=8)
THIRD_NOTICE_SEEN = timedelta(days=3)

MESSAGE_KIND = 'forgotten_pull_requests'


class ForgottenPullRequests(Detector):
    name = 'forgotten_pull_requests'

    def __init__(self, source: SourceHost, store, dispatcher, config, clock=None):
        super().__init__(store, dispatcher, config, clock)
        self.source = source

    def open_pull_requests(self, stop_event=None):
        result = []
        for repo in self.source.list_repositories():
            if self.cancelled(stop_event):
                break
            slug = repo.get('slug') or repo.get('name')
            if slug:
                result.extend(self.source.list_open_pull_requests(slug))
        return result

    def run(self, stop_event=None):
        protected = {p.name for p in self.store.list_protected_names()}
        known = {row.key: row for row in self.store.list_forgotten_pull_requests()}
        pull_requests = self.open_pull_requests(stop_event)
        if self.cancelled(stop_event):
            return

        now = self.clock()
        buckets: Dict[str, Dict[str, List[str]]] = {b: {} for b in ATTENTION_BUCKETS}
        created: List[ForgottenPullRequest] = []
        expired: List[ForgottenPullRequest] = []
        seen = set()
        for pr in pull_requests:
            if pr.title in protected:
                continue
            activity = self.source.list_pull_request_activity(pr.repo_slug, pr.id)
            pr.last_activity_at = last_activity_from_feed(activity) or pr.last_activity_at
            if pr.last_activity_at is not None and pr.last_activity_at > now - FRESH_ACTIVITY:
                continue
            key = (pr.repo_slug, pr.id)
            if key in seen:
                continue
            seen.add(key)
            row = known.get(key)
            idle_since = pr.last_activity_at or now
            if row is None:
                created.append(ForgottenPullRequest(pr.repo_slug, pr.id, now))
                bucket = BUCKET_FIRST
            elif idle_since < now - THIRD_NOTICE_ACTIVITY and row.first_seen_at < now - THIRD_NOTICE_SEEN:
                expired.append(row)
                bucket = BUCKET_THIRD
            elif idle_since < now - SECOND_NOTICE_ACTIVITY and row.first_seen_at < now - SECOND_NOTICE_SEEN:
                bucket = BUCKET_SECOND
            else:
                continue
            author = self.config.users.chat_mention_for_real_name(pr.author_name)
            buckets[bucket].setdefault(author, []).append(pr.chat_link())
        gone = [row for key, row in known.items() if key not in seen]

        channel = self.config.channel('back_office')
        for bucket in ATTENTION_BUCKETS:
            if self.cancelled(stop_event):
                return
            self.dispatcher.send_message(channel, render_bucket(MESSAGE_KIND, bucket, buckets[bucket]))

        with self.store.transaction():
            for row in created:
                self.store.create_forgotten_pull_request(row)
            for row in expired + gone:
                self.store.delete_forgotten_pull_request(row.repo_slug, row.pull_request_id)
        logger.info(
            "forgotten pull requests: %d new, %d expired, %d swept",
            len(created), len(expired), len(gone),
        )
