"""
FastAPI application wiring the webhooks, slash commands and chat events; served by uvicorn.
"""

import json
import logging
from typing import Any, Optional
from urllib.parse import parse_qs

import uvicorn
from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from ports import FileHost, IssueTracker, SourceHost
from storage.errors import InternalError, NotFoundError

from .commands import ChatCommands
from .events import AwayAutoReply, SlackSignature
from .webhooks import WebhookError, Webhooks

logger = logging.getLogger(__name__)

OK = {"result": "ok"}


class Services:
    """Everything the HTTP handlers reach: configuration, store, dispatcher and service clients."""

    def __init__(
        self,
        config,
        store,
        dispatcher,
        source: Optional[SourceHost] = None,
        gitlab: Optional[FileHost] = None,
        tracker: Optional[IssueTracker] = None,
        clock=None,
    ):
        self.config = config
        self.store = store
        self.dispatcher = dispatcher
        self.source = source
        self.gitlab = gitlab
        self.tracker = tracker
        self.clock = clock


async def read_json(request: Request) -> Any:
    body = await request.body()
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as ex:
        raise WebhookError("body is not valid JSON") from ex


def _schedule(background_tasks: BackgroundTasks, task) -> JSONResponse:
    if task is not None:
        background_tasks.add_task(task)
    return JSONResponse(OK)


def create_app(services: Services, title: str = 'officebot', version: str = '0.1.0') -> FastAPI:
    app = FastAPI(title=title, version=version)
    app.state.services = services
    webhooks = Webhooks(services)
    commands = ChatCommands(services.store, services.config, clock=services.clock)
    auto_reply = AwayAutoReply(services.store, services.dispatcher, services.config, clock=services.clock)
    signature = SlackSignature(services.config.slack.get('signing_secret'))

    @app.exception_handler(WebhookError)
    async def bad_request(request: Request, ex: WebhookError):
        return JSONResponse({"error": str(ex)}, status_code=400)

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, ex: NotFoundError):
        return JSONResponse({"error": str(ex)}, status_code=404)

    @app.exception_handler(InternalError)
    async def internal_error(request: Request, ex: InternalError):
        logger.error("request %s failed: %s", request.url.path, ex)
        return JSONResponse({"error": "internal error"}, status_code=500)

    @app.get('/healthcheck')
    async def healthcheck():
        return OK

    @app.post('/api/v1/git/onevent/push')
    async def git_push(request: Request, background_tasks: BackgroundTasks):
        return _schedule(background_tasks, webhooks.push(await read_json(request)))

    @app.post('/api/v1/jira/onevent/issue-updated')
    async def issue_updated(request: Request, background_tasks: BackgroundTasks):
        return _schedule(background_tasks, webhooks.issue_updated(await read_json(request)))

    @app.post('/api/v1/bitbucket/onevent/pr-merged')
    async def pr_merged(request: Request, background_tasks: BackgroundTasks):
        return _schedule(background_tasks, webhooks.pr_merged(await read_json(request)))

    async def verified_body(request: Request) -> Optional[bytes]:
        body = await request.body()
        if not signature.verify(body, request.headers.get('X-Slack-Request-Timestamp'), request.headers.get('X-Slack-Signature')):
            return None
        return body

    @app.post('/api/v1/slack/command')
    async def slack_command(request: Request):
        body = await verified_body(request)
        if body is None:
            return JSONResponse({"error": "invalid signature"}, status_code=403)
        form = {k: v[0] for k, v in parse_qs(body.decode('utf-8')).items()}
        reply = await run_in_threadpool(
            commands.handle, form.get('command', ''), form.get('text', ''), form.get('user_id', ''), form.get('channel_id', '')
        )
        return JSONResponse({"response_type": "ephemeral", "text": reply})

    @app.post('/api/v1/slack/events')
    async def slack_events(request: Request, background_tasks: BackgroundTasks):
        body = await verified_body(request)
        if body is None:
            return JSONResponse({"error": "invalid signature"}, status_code=403)
        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as ex:
            raise WebhookError("body is not valid JSON") from ex
        if not isinstance(payload, dict):
            raise WebhookError("payload must be a JSON object")
        if payload.get('type') == 'url_verification':
            return JSONResponse({"challenge": payload.get('challenge', '')})
        event = payload.get('event') or {}
        if payload.get('type') == 'event_callback' and event.get('type') == 'message':
            background_tasks.add_task(auto_reply.handle_message, event)
        return JSONResponse(OK)

    return app


def run_app(app: FastAPI, host: str = '0.0.0.0', port: int = 8080, log_level: str = 'info'):
    """Serve the app through uvicorn until interrupted."""
    uvicorn.run(app, host=host, port=port, log_level=log_level)
