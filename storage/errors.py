"""
Error taxonomy shared by the state store, the service ports and the detectors.
Everything the core raises is either NotFoundError or InternalError.
"""


class BotError(Exception):
    """Base class for all errors raised by the bot core."""


class NotFoundError(BotError):
    """A requested row does not exist. Callers usually treat it as 'not seen before'."""


class InternalError(BotError):
    """Anything else: database failures, port failures, unexpected payloads."""


class MigrationError(InternalError):
    """The applied schema does not match the embedded migration bundle."""


class ConfigError(InternalError):
    """The configuration file is missing or invalid."""


__all__ = ["BotError", "NotFoundError", "InternalError", "MigrationError", "ConfigError"]
