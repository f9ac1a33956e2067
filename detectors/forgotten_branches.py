"""
ForgottenBranches: branches without an open pull request, aged by the first time they were seen.
"""

import logging
import re
from datetime import timedelta
from typing import Dict, List

from models import ATTENTION_BUCKETS, BUCKET_FIRST, BUCKET_SECOND, BUCKET_THIRD, ForgottenBranch
from ports import SourceHost
from report.renderer import render_bucket
from storage.errors import BotError

from .base import Detector

logger = logging.getLogger(__name__)

IGNORED_BRANCHES = ('master', 'dev')
RELEASE_BRANCH_RE = re.compile(r'^(release|hotfix)/[0-9]{8}')

SECOND_NOTICE_AGE = timedelta(days=6)
REMOVAL_AGE = timedelta(days=7)

MESSAGE_KIND = 'forgotten_branches'


def is_ignored_branch(name: str) -> bool:
    return name in IGNORED_BRANCHES or bool(RELEASE_BRANCH_RE.match(name))


class ForgottenBranches(Detector):
    name = 'forgotten_branches'

    def __init__(self, source: SourceHost, store, dispatcher, config, clock=None):
        super().__init__(store, dispatcher, config, clock)
        self.source = source
        self.delete_upstream = bool(config.bitbucket.get('delete_forgotten_branches', False))

    def run(self, stop_event=None):
        protected = {p.name for p in self.store.list_protected_names()}
        known = {row.key: row for row in self.store.list_forgotten_branches()}
        branches = self.source.list_branches_without_pull_requests()
        if self.cancelled(stop_event):
            return

        now = self.clock()
        buckets: Dict[str, Dict[str, List[str]]] = {b: {} for b in ATTENTION_BUCKETS}
        created: List[ForgottenBranch] = []
        expired: List[ForgottenBranch] = []
        seen = set()
        for branch in branches:
            if is_ignored_branch(branch.name) or branch.name in protected:
                continue
            key = (branch.repo_slug, branch.name)
            if key in seen:
                continue
            seen.add(key)
            row = known.get(key)
            if row is None:
                created.append(ForgottenBranch(branch.repo_slug, branch.name, now))
                bucket = BUCKET_FIRST
            else:
                age = now - row.first_seen_at
                if age >= REMOVAL_AGE:
                    expired.append(row)
                    bucket = BUCKET_THIRD
                elif age >= SECOND_NOTICE_AGE:
                    bucket = BUCKET_SECOND
                else:
                    continue
            author = self.config.users.chat_mention_for_real_name(branch.author_name)
            buckets[bucket].setdefault(author, []).append(branch.chat_link())
        gone = [row for key, row in known.items() if key not in seen]

        channel = self.config.channel('back_office')
        for bucket in ATTENTION_BUCKETS:
            if self.cancelled(stop_event):
                return
            text = render_bucket(MESSAGE_KIND, bucket, buckets[bucket], deleted=self.delete_upstream)
            self.dispatcher.send_message(channel, text)

        with self.store.transaction():
            for row in created:
                self.store.create_forgotten_branch(row)
            for row in expired + gone:
                self.store.delete_forgotten_branch(row.repo_slug, row.name)
        logger.info(
            "forgotten branches: %d new, %d expired, %d swept",
            len(created), len(expired), len(gone),
        )

        if self.delete_upstream:
            for row in expired:
                try:
                    self.source.delete_branch(row.repo_slug, row.name)
                except BotError as ex:
                    logger.error("can't delete branch %s/%s: %s", row.repo_slug, row.name, ex)
