"""
Command routing.

Turns a triggered chat message into a Command and runs the matching
handler, replying exactly once per recognised command.
"""

from __future__ import annotations

import structlog

from .commands import (
    AddCommand,
    HelpCommand,
    ListCommand,
    RemoveCommand,
    UnknownCommand,
    parse_command,
)
from .metrics import MetricsCollector
from .subscriptions import SubscriptionCoordinator
from .transport import ChatTransport

log = structlog.get_logger()

HELP_TEXT = (
    "Those are the commands:\n"
    "- <b>add</b> <i>[channelUrl]</i>: adds a subscription\n"
    "- <b>rm</b> <i>[channelUrl]</i>: removes a subscription\n"
    "- <b>list</b>: lists all subscriptions\n"
)
UNKNOWN_TEXT = "Unknown command, try typing _bs help"
MISSING_URL_TEXT = "Please give me a channel URL, e.g. _bs {directive} https://www.youtube.com/@channel"


class CommandRouter:
    """Routes parsed chat commands to the subscription coordinator."""

    def __init__(
        self,
        coordinator: SubscriptionCoordinator,
        transport: ChatTransport,
        metrics: MetricsCollector | None = None,
    ):
        self._coordinator = coordinator
        self._transport = transport
        self._metrics = metrics

    async def handle_message(self, chat_id: int, text: str) -> None:
        command = parse_command(text)
        if command is None:
            return

        if self._metrics:
            self._metrics.inc("commands_total")
        log.info("router.command", chat_id=chat_id, command=type(command).__name__)

        if isinstance(command, AddCommand):
            if not command.url:
                await self._reply(chat_id, MISSING_URL_TEXT.format(directive="add"))
                return
            await self._reply(chat_id, await self._coordinator.add(chat_id, command.url))
        elif isinstance(command, RemoveCommand):
            if not command.url:
                await self._reply(chat_id, MISSING_URL_TEXT.format(directive="rm"))
                return
            await self._reply(chat_id, await self._coordinator.remove(chat_id, command.url))
        elif isinstance(command, ListCommand):
            await self._reply(chat_id, await self._coordinator.list_for_chat(chat_id))
        elif isinstance(command, HelpCommand):
            await self._reply(chat_id, HELP_TEXT, html=True)
        elif isinstance(command, UnknownCommand):
            log.info("router.unknown_directive", chat_id=chat_id, directive=command.directive)
            await self._reply(chat_id, UNKNOWN_TEXT)

    async def _reply(self, chat_id: int, text: str, html: bool = False) -> None:
        try:
            await self._transport.send_message(chat_id, text, html=html)
        except Exception as exc:
            log.error("router.reply_failed", chat_id=chat_id, error=str(exc))
