"""
CLI entry point for the office bot. Wires config -> state store -> service clients -> detectors,
then runs the task manager, the release bot and the HTTP server until interrupted.
"""

import argparse
import logging
import sys
import threading
from typing import Dict, List, Optional

from detectors import (
    AfkTimerSweeper,
    ForgottenBranches,
    ForgottenPullRequests,
    LessWorked,
    LowPriorityIssuesStarted,
    MentionReply,
    WorksRatio,
)
from dispatcher import Dispatcher
from ingest.bitbucket import BitbucketClient
from ingest.gitlab import GitLabClient
from ingest.hubstaff import HubstaffClient
from ingest.jira import JiraClient
from ingest.retry import configure_retry
from ingest.slack import SlackChat
from ingest.telegram import TelegramClient
from models import RbAuth
from releasebot import ReleaseBot
from server import Services, create_app, run_app
from settings import Config, load_config
from storage.errors import InternalError, NotFoundError
from storage.store import StateStore
from taskmanager import TaskManager

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Office automation bot")
    parser.add_argument("--config", type=str, default=None, help="Path to the YAML configuration file (default: OFFICEBOT_CONFIG or config.yml)")
    parser.add_argument("--log-level", type=str, default=None, help="Logging level (overrides log_level from the config)")
    parser.add_argument("--migrate-only", action="store_true", help="Apply database migrations and exit")
    parser.add_argument("--run", type=str, default="", metavar="JOB", help="Run one job once and exit")
    parser.add_argument("--list-jobs", action="store_true", help="List the registered jobs with their schedules and exit")
    parser.add_argument("--grant", nargs=2, metavar=("TG_USER_ID", "PROJECTS"), help="Set the release bot project allow-list (comma separated keys) for a user")
    parser.add_argument("--no-http", action="store_true", help="Do not start the HTTP server")
    parser.add_argument("--no-telegram", action="store_true", help="Do not start the release bot")
    return parser


def setup_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, (level or 'INFO').upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


class Clients:
    """Service clients built from the configuration."""

    def __init__(self, config: Config):
        jira, bitbucket, gitlab = config.jira, config.bitbucket, config.gitlab
        self.jira = JiraClient(jira.get('api_url', ''), jira.get('username', ''), jira.get('token', ''), browse_url=jira.get('browse_url') or None)
        self.bitbucket = BitbucketClient(bitbucket.get('api_url', ''), bitbucket.get('username', ''), bitbucket.get('password', ''), bitbucket.get('owner', ''))
        self.gitlab = GitLabClient(gitlab.get('api_url', ''), gitlab.get('token', ''))
        self.hubstaff = HubstaffClient(config.hubstaff.get('api_url', ''), config.hubstaff.get('app_token', ''), config.hubstaff.get('auth_token', ''))
        self.slack = SlackChat(config.slack.get('out_token', ''), in_token=config.slack.get('in_token') or None)
        self.telegram = TelegramClient(config.telegram.get('api_key', '')) if config.telegram.get('api_key') else None


def build_detectors(config: Config, store: StateStore, clients: Clients, dispatcher: Dispatcher) -> Dict[str, object]:
    detectors = [
        ForgottenBranches(clients.bitbucket, store, dispatcher, config),
        ForgottenPullRequests(clients.bitbucket, store, dispatcher, config),
        MentionReply(clients.slack, store, dispatcher, config),
        LowPriorityIssuesStarted(clients.jira, store, dispatcher, config),
        WorksRatio(clients.jira, store, dispatcher, config),
        LessWorked(clients.hubstaff, store, dispatcher, config),
        AfkTimerSweeper(store, dispatcher, config),
    ]
    return {d.name: d for d in detectors}


def register_jobs(manager: TaskManager, config: Config, detectors: Dict[str, object]) -> List[str]:
    """Schedule every detector that has a cron expression; an empty expression disables the job."""
    registered = []
    for name, detector in detectors.items():
        spec = config.schedules.get(name)
        if not spec:
            logger.info("job %s is disabled", name)
            continue
        manager.schedule(name, spec, detector)
        registered.append(name)
    return registered


def grant_projects(store: StateStore, tg_user_id: str, projects: str) -> RbAuth:
    keys = sorted({p.strip().upper() for p in projects.split(',') if p.strip()})
    try:
        auth = store.get_rb_auth(int(tg_user_id))
    except NotFoundError:
        auth = RbAuth(int(tg_user_id))
    auth.projects = keys
    store.upsert_rb_auth(auth)
    return auth


def serve(args, config: Config, store: StateStore, clients: Clients, dispatcher: Dispatcher, manager: TaskManager):
    manager.start()
    bot_thread: Optional[threading.Thread] = None
    if clients.telegram is not None and not args.no_telegram:
        bot = ReleaseBot(clients.telegram, store, clients.jira)
        bot_thread = threading.Thread(target=bot.run, args=(manager.stop_event,), name='releasebot', daemon=True)
        bot_thread.start()
    try:
        if args.no_http:
            manager.stop_event.wait()
        else:
            services = Services(config, store, dispatcher, source=clients.bitbucket, gitlab=clients.gitlab, tracker=clients.jira)
            run_app(create_app(services), host=config.http.host, port=int(config.http.port), log_level=config.log_level.lower())
    except KeyboardInterrupt:
        logger.info("interrupted")
    finally:
        manager.stop(timeout=60)
        if bot_thread is not None:
            bot_thread.join(timeout=60)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    store: Optional[StateStore] = None
    try:
        config = load_config(args.config)
        setup_logging(args.log_level or config.log_level)
        retry = config.retry
        configure_retry(max_retries=retry.max_retries, backoff_base=retry.backoff_base)

        store = StateStore(config.database)
        applied = store.migrate()
        logger.info("database %s ready, %d migrations applied", store.path, applied)
        if args.migrate_only:
            return 0
        if args.grant:
            auth = grant_projects(store, args.grant[0], args.grant[1])
            print(f"{auth.tg_user_id}: {', '.join(auth.projects) or '(no projects)'}")
            return 0

        clients = Clients(config)
        dispatcher = Dispatcher(clients.slack)
        manager = TaskManager()
        register_jobs(manager, config, build_detectors(config, store, clients, dispatcher))
        if args.list_jobs:
            for name in manager.jobs():
                print(f"{name}\t{config.schedules[name]}")
            return 0
        if args.run:
            if args.run not in manager.jobs():
                print(f"Unknown job: {args.run}", file=sys.stderr)
                return 1
            manager.run_once(args.run)
            return 0 if manager.stats()[args.run]['failures'] == 0 else 1

        serve(args, config, store, clients, dispatcher, manager)
        return 0
    except (InternalError, ValueError) as ex:
        logging.getLogger(__name__).error("startup failed: %s", ex)
        print(f"Startup failed: {ex}", file=sys.stderr)
        return 1
    finally:
        if store is not None:
            store.close()


if __name__ == "__main__":
    sys.exit(main())
