"""
HTTP surface: health check, source-host and tracker webhooks, chat slash commands and chat events.
"""

from .app import Services, create_app, run_app

__all__ = ["Services", "create_app", "run_app"]
