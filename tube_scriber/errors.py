"""
Error kinds raised across the bot.

Everything derives from ScriberError so command handlers can catch a single
type at their boundary and turn it into a short chat reply.
"""

from __future__ import annotations


class ScriberError(Exception):
    """Base class for all bot errors."""


class InvalidChannel(ScriberError):
    """The URL does not resolve to a channel id."""


class ChannelLookupError(ScriberError):
    """The channel page could not be fetched (network failure, timeout, 5xx)."""


class StorageError(ScriberError):
    """The subscription store failed."""


class HubError(ScriberError):
    """A subscribe/unsubscribe request to the hub failed."""


class MissingChatContext(ScriberError):
    """An inbound update carries no usable chat identity."""


class ConfigurationMissing(ScriberError):
    """A required setting is absent at startup."""
