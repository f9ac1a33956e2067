"""
GitLab client used by the push webhook to read migration files from a pushed ref.
"""

import logging
from urllib.parse import quote

from ingest.retry import request_with_retries
from storage.errors import InternalError, NotFoundError

logger = logging.getLogger(__name__)


class GitLabClient:
    def __init__(self, base_url: str, token: str):
        self.base_url = (base_url or 'https://gitlab.com/api/v4').rstrip('/')
        self.token = token
        self.headers = {"PRIVATE-TOKEN": self.token} if self.token else {}

    def get_file(self, project_id, path: str, ref: str) -> bytes:
        """Raw content of path at ref in the given project."""
        url = f"{self.base_url}/projects/{quote(str(project_id), safe='')}/repository/files/{quote(path, safe='')}/raw"
        res = request_with_retries('GET', url, headers=self.headers, params={"ref": ref})
        status = res.get('status', 0)
        if status == 404:
            raise NotFoundError(f"{path} not found at {ref}")
        if status != 200:
            raise InternalError(f"gitlab file {path} failed with status {status}")
        body = res.get('response')
        if isinstance(body, bytes):
            return body
        if isinstance(body, str):
            return body.encode('utf-8')
        return str(body).encode('utf-8')
