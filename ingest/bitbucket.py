"""
Bitbucket Cloud client backing the SourceHost port: repositories, branches, open pull
requests and their activity feeds. Paginated endpoints are followed through their 'next' links.
"""

import logging
from typing import Any, Dict, List, Optional

from ingest.retry import request_with_retries
from normalize.models import Branch, PullRequest
from normalize.util import normalize_branch, normalize_pull_request
from storage.errors import InternalError, NotFoundError

logger = logging.getLogger(__name__)

CONFLICT_MARKER = '<<<<<<< destination'


class BitbucketClient:
    """Simple Bitbucket client with basic auth, scoped to one workspace owner."""

    def __init__(self, base_url: str, username: str, password: str, owner: str):
        self.base_url = (base_url or 'https://api.bitbucket.org/2.0').rstrip('/')
        self.owner = owner
        self.auth = (username, password) if username else None
        self.headers = {"Accept": "application/json"}

    def _repo_url(self, repo_slug: str, suffix: str = '') -> str:
        url = f"{self.base_url}/repositories/{self.owner}/{repo_slug}"
        return f"{url}/{suffix.lstrip('/')}" if suffix else url

    def _call(self, method: str, url: str, params: Optional[Dict[str, Any]] = None, json: Any = None, expect=(200,)):
        res = request_with_retries(method, url, headers=self.headers, params=params, json=json, auth=self.auth)
        status = res.get('status', 0)
        if status == 404:
            raise NotFoundError(f"bitbucket resource {url} not found")
        if status not in expect:
            logger.error("bitbucket %s %s failed with %s", method, url, status)
            raise InternalError(f"bitbucket {method} {url} failed with status {status}")
        return res.get('response')

    def _paginate(self, url: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        values: List[Dict[str, Any]] = []
        next_url = url
        while next_url:
            data = self._call('GET', next_url, params=params) or {}
            values.extend(data.get('values', []))
            next_url = data.get('next')
            # the next link already carries the query string
            params = None
        return values

    def list_repositories(self) -> List[Dict[str, Any]]:
        return self._paginate(f"{self.base_url}/repositories/{self.owner}", params={"pagelen": 100})

    def list_open_pull_requests(self, repo_slug: str) -> List[PullRequest]:
        raw = self._paginate(self._repo_url(repo_slug, 'pullrequests'), params={"state": "OPEN", "pagelen": 50})
        return [normalize_pull_request(pr, repo_slug) for pr in raw]

    def list_pull_request_activity(self, repo_slug: str, pr_id: int) -> List[Dict[str, Any]]:
        return self._paginate(self._repo_url(repo_slug, f'pullrequests/{pr_id}/activity'), params={"pagelen": 50})

    def pull_request_diff(self, repo_slug: str, pr_id: int) -> str:
        body = self._call('GET', self._repo_url(repo_slug, f'pullrequests/{pr_id}/diff'))
        if isinstance(body, bytes):
            return body.decode('utf-8', errors='replace')
        return str(body or '')

    def list_branches(self, repo_slug: str) -> List[Branch]:
        raw = self._paginate(self._repo_url(repo_slug, 'refs/branches'), params={"pagelen": 100})
        return [normalize_branch(b, repo_slug) for b in raw]

    def list_branches_without_pull_requests(self) -> List[Branch]:
        """Branches of every repository that are not the source of an open pull request."""
        result: List[Branch] = []
        for repo in self.list_repositories():
            slug = repo.get('slug') or repo.get('name')
            if not slug:
                continue
            with_pr = {pr.source_branch for pr in self.list_open_pull_requests(slug)}
            result.extend(b for b in self.list_branches(slug) if b.name not in with_pr)
        return result

    def delete_branch(self, repo_slug: str, name: str) -> None:
        self._call('DELETE', self._repo_url(repo_slug, f'refs/branches/{name}'), expect=(200, 204))
        logger.info("deleted branch %s/%s", repo_slug, name)

    def repo_slug_for_project(self, project_key: str) -> str:
        data = self._call('GET', f"{self.base_url}/repositories/{self.owner}", params={"q": f'project.key="{project_key}"'}) or {}
        values = data.get('values') or []
        if not values:
            raise NotFoundError(f"no repository for project key {project_key}")
        return values[0].get('slug') or values[0].get('name')

    def create_branch(self, repo_slug: str, name: str, from_branch: str) -> None:
        """Create a branch pointing at the head of from_branch; an existing branch is left alone."""
        parent = self._call('GET', self._repo_url(repo_slug, f'refs/branches/{from_branch}')) or {}
        target_hash = (parent.get('target') or {}).get('hash')
        if not target_hash:
            raise InternalError(f"can't resolve head of {repo_slug}/{from_branch}")
        res = request_with_retries(
            'POST', self._repo_url(repo_slug, 'refs/branches'), headers=self.headers, json={"name": name, "target": {"hash": target_hash}}, auth=self.auth
        )
        status = res.get('status', 0)
        if status in (200, 201):
            logger.info("created branch %s/%s from %s", repo_slug, name, from_branch)
            return
        body = res.get('response') or {}
        error_key = ((body.get('error') or {}).get('data') or {}).get('key') if isinstance(body, dict) else None
        if error_key == 'BRANCH_ALREADY_EXISTS':
            return
        raise InternalError(f"can't create branch {repo_slug}/{name}: status {status}")
