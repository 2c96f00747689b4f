"""
Telegram chat transport.

Receives new text messages that start with the bot trigger via long polling
(edits are ignored) and hands them to a message handler, one task per update;
sends replies and notifications back.
"""

from __future__ import annotations

from typing import Any, Callable, Coroutine, Protocol

import structlog
from telegram import Update
from telegram.constants import ParseMode
from telegram.ext import Application, ContextTypes, MessageHandler, filters
from telegram.request import BaseRequest

from .commands import TRIGGER_PATTERN
from .errors import MissingChatContext

log = structlog.get_logger()

MessageCallback = Callable[[int, str], Coroutine[Any, Any, None]]


class ChatTransport(Protocol):
    async def send_message(self, chat_id: int, text: str, html: bool = False) -> None: ...


def chat_id_of(update: Update) -> int:
    chat = update.effective_chat
    if chat is None:
        raise MissingChatContext(f"update {update.update_id} has no chat")
    return chat.id


class TelegramTransport:
    """python-telegram-bot Application wrapped for manual start/stop."""

    def __init__(self, token: str, request: BaseRequest | None = None):
        # Updates from different chats are handled side by side; a slow
        # channel lookup for one chat must not hold up the others
        builder = Application.builder().token(token).concurrent_updates(True)
        if request is not None:
            builder = builder.request(request).get_updates_request(request)
        self._application = builder.build()
        self._callback: MessageCallback | None = None
        self._running = False

    def on_message(self, callback: MessageCallback) -> None:
        self._callback = callback
        self._application.add_handler(
            MessageHandler(
                filters.UpdateType.MESSAGE & filters.TEXT & filters.Regex(TRIGGER_PATTERN),
                self._handle_update,
            )
        )

    async def start(self) -> None:
        await self._application.initialize()
        await self._application.start()
        await self._application.updater.start_polling()
        self._running = True
        log.info("transport.started", bot=self._application.bot.username)

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        await self._application.updater.stop()
        await self._application.stop()
        await self._application.shutdown()
        log.info("transport.stopped")

    async def send_message(self, chat_id: int, text: str, html: bool = False) -> None:
        await self._application.bot.send_message(
            chat_id=chat_id,
            text=text,
            parse_mode=ParseMode.HTML if html else None,
        )

    async def _handle_update(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        if message is None or not message.text or self._callback is None:
            return
        try:
            chat_id = chat_id_of(update)
        except MissingChatContext as exc:
            log.error("transport.missing_chat", error=str(exc))
            return
        await self._callback(chat_id, message.text)
