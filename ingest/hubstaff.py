"""
Hubstaff client backing the TimeTracker port.
"""

import logging
from datetime import date
from typing import Any, Dict, List

from ingest.retry import request_with_retries
from storage.errors import InternalError

logger = logging.getLogger(__name__)


class HubstaffClient:
    def __init__(self, base_url: str, app_token: str, auth_token: str):
        self.base_url = (base_url or 'https://api.hubstaff.com').rstrip('/')
        self.headers = {
            "App-Token": app_token or '',
            "Auth-Token": auth_token or '',
            "Accept": "application/json",
        }

    def report_by_member_and_team(self, start: date, end: date, org_id) -> List[Dict[str, Any]]:
        """Worked time per organization and member between two dates (inclusive).

        Each organization is {'id', 'name', 'duration', 'users': [{'id', 'name', 'email', 'duration'}]}.
        """
        url = f"{self.base_url}/v1/custom/by_member/team"
        params = {"start_date": start.isoformat(), "end_date": end.isoformat(), "organizations": org_id}
        res = request_with_retries('GET', url, headers=self.headers, params=params)
        if res.get('status') != 200:
            logger.error("hubstaff report failed with %s", res.get('status'))
            raise InternalError(f"hubstaff report failed with status {res.get('status')}")
        data = res.get('response') or {}
        return list(data.get('organizations') or [])
