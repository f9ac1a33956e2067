"""
Configuration loading and the user directory.
A single YAML file is read at startup; the resulting objects are not mutated afterwards.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import yaml

from storage.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.getenv('OFFICEBOT_CONFIG', 'config.yml')

TAG_SLACK_ID = 'slackid'
TAG_SLACK_NAME = 'slackname'
TAG_SLACK_REAL_NAME = 'slackrealname'
TAG_EMAIL = 'email'
TAG_JIRA_ACCOUNT_ID = 'jiraaccountid'
EMPTY_TAG_VALUE = 'empty'

UNKNOWN_USER = 'unknown user'

TEAM_BE = 'be'
TEAM_FE = 'fe'
TEAM_DESIGN = 'design'
TEAM_DEVOPS = 'devops'

DEFAULT_SCHEDULES = {
    'forgotten_branches': '0 10 * * 1-5',
    'forgotten_pull_requests': '0 11 * * 1-5',
    'mention_reply': '0 * * * *',
    'low_priority_issues': '0 * * * *',
    'works_ratio': '0 9 * * 1',
    'less_worked': '0 10 * * 2-6',
    'afk_timers': '* * * * *',
}

DEFAULT_WORKS_RATIO_TYPES = ['BE Task', 'FE Task', 'BE Sub-Task', 'FE Sub-Task', 'Design Task']


class Section:
    """Read-only attribute view over one mapping of the YAML document."""

    def __init__(self, data: Optional[Dict[str, Any]] = None, defaults: Optional[Dict[str, Any]] = None):
        merged = dict(defaults or {})
        merged.update(data or {})
        self._data = merged

    def __getattr__(self, item):
        if item.startswith('_'):
            raise AttributeError(item)
        return self._data.get(item)

    def get(self, key: str, default=None):
        value = self._data.get(key)
        return default if value is None else value

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._data)


class Employees:
    """Team rosters (lists of chat real names) and the chat ids of the people copied on reports."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        data = data or {}
        self.director = data.get('director') or ''
        self.project_manager = data.get('project_manager') or ''
        self.art_director = data.get('art_director') or ''
        self.team_leader_be = data.get('team_leader_be') or ''
        self.team_leader_fe = data.get('team_leader_fe') or ''
        self.team_leader_devops = data.get('team_leader_devops') or ''
        self.be_team: List[str] = list(data.get('be_team') or [])
        self.fe_team: List[str] = list(data.get('fe_team') or [])
        self.design: List[str] = list(data.get('design') or [])
        self.devops: List[str] = list(data.get('devops') or [])

    def team_of(self, real_name: str) -> Optional[str]:
        for team, roster in ((TEAM_BE, self.be_team), (TEAM_FE, self.fe_team), (TEAM_DESIGN, self.design), (TEAM_DEVOPS, self.devops)):
            if real_name and real_name in roster:
                return team
        return None

    def leader_of(self, team: Optional[str]) -> str:
        return {
            TEAM_BE: self.team_leader_be,
            TEAM_FE: self.team_leader_fe,
            TEAM_DESIGN: self.art_director,
            TEAM_DEVOPS: self.team_leader_devops,
        }.get(team, '')


def mention(user_id: str) -> str:
    return f"<@{user_id}>" if user_id else ''


class UserDirectory:
    """
    Bidirectional user index: (tag, value) -> user and chat id -> user.
    Each user is a mapping of tag -> value; the value 'empty' marks a missing tag.
    """

    def __init__(self, users: Optional[List[Dict[str, str]]] = None):
        self._by_tag: Dict[tuple, Dict[str, str]] = {}
        self._by_id: Dict[str, Dict[str, str]] = {}
        for raw in users or []:
            user = {str(k).lower(): str(v) for k, v in (raw or {}).items() if v is not None}
            for tag, value in user.items():
                if not value or value == EMPTY_TAG_VALUE:
                    continue
                if (tag, value) in self._by_tag:
                    raise ConfigError(f"duplicate user directory entry for {tag}={value}")
                self._by_tag[(tag, value)] = user
            chat_id = user.get(TAG_SLACK_ID)
            if chat_id and chat_id != EMPTY_TAG_VALUE:
                self._by_id[chat_id] = user

    def __len__(self):
        return len(self._by_id)

    def lookup(self, tag: str, value: str) -> Dict[str, str]:
        """Return the user's tags, or an empty dict when nobody carries tag=value."""
        if not value or value == EMPTY_TAG_VALUE:
            return {}
        return dict(self._by_tag.get((tag, value), {}))

    def tags_for(self, user_id: str) -> Dict[str, str]:
        return dict(self._by_id.get(user_id, {}))

    def value(self, user: Dict[str, str], tag: str) -> str:
        value = user.get(tag) or ''
        return '' if value == EMPTY_TAG_VALUE else value

    def chat_mention_for_real_name(self, real_name: str) -> str:
        """'<@id>' for a chat real name, or the fixed unknown-user label."""
        user_id = self.value(self.lookup(TAG_SLACK_REAL_NAME, real_name), TAG_SLACK_ID)
        return mention(user_id) if user_id else UNKNOWN_USER

    def real_name(self, user_id: str, default: str = '') -> str:
        return self.value(self.tags_for(user_id), TAG_SLACK_REAL_NAME) or default


class Config:
    """
    Parsed configuration file. Sections are exposed as attributes.
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        data = data or {}
        self.database = data.get('database') or 'officebot.db'
        self.log_level = str(data.get('log_level') or 'INFO').upper()
        self.http = Section(data.get('http'), {'host': '0.0.0.0', 'port': 8080})
        slack = dict(data.get('slack') or {})
        self.employees = Employees(slack.pop('employees', None))
        self.slack = Section(slack, {'bot_ids': [], 'ignore_list': [], 'channels': {}})
        self.jira = Section(data.get('jira'), {'works_ratio_types': DEFAULT_WORKS_RATIO_TYPES, 'browse_url': ''})
        self.bitbucket = Section(data.get('bitbucket'), {'delete_forgotten_branches': False})
        self.gitlab = Section(data.get('gitlab'))
        self.hubstaff = Section(data.get('hubstaff'))
        self.telegram = Section(data.get('telegram'))
        self.retry = Section(data.get('retry'))
        self.schedules = dict(DEFAULT_SCHEDULES)
        self.schedules.update(data.get('schedules') or {})
        self.users = UserDirectory(data.get('users'))

    def channel(self, name: str) -> str:
        channels = self.slack.get('channels', {}) or {}
        return channels.get(name) or channels.get('back_office') or ''

    @property
    def ignore_list(self) -> List[str]:
        return list(self.slack.get('ignore_list', []) or [])

    @property
    def bot_ids(self) -> List[str]:
        return list(self.slack.get('bot_ids', []) or [])


def load_config(path: Optional[str] = None) -> Config:
    """Load the YAML configuration file. Raises ConfigError if it is missing or malformed."""
    path = path or DEFAULT_CONFIG_PATH
    if not os.path.exists(path):
        raise ConfigError(f"configuration file {path} not found")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as ex:
        raise ConfigError(f"can't parse {path}: {ex}") from ex
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    logger.debug("loaded configuration from %s", path)
    return Config(data)
