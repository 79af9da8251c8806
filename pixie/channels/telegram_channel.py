"""
Telegram channel adapter for Pixie.

Uses python-telegram-bot v22+ async API with AIORateLimiter.

IMPORTANT: We use initialize()+start()+updater.start_polling() instead of
app.run_polling() because the latter calls asyncio.run() internally and would
conflict with the event loop the orchestrator already runs on.

Only the configured operator is served; updates from anyone else are logged
and dropped without a reply.

Slash commands:
  /start    — model keyboard (until a model is chosen)
  /status   — model, primary session state, active delegates
  /usage    — current conversation and lifetime usage
  /restart  — restart the process (exit code 42)

Every other text message goes to the orchestrator as an operator message.
"""

from __future__ import annotations

import asyncio
from typing import Sequence

import structlog
from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.error import BadRequest, Forbidden, NetworkError, RetryAfter, TimedOut
from telegram.ext import (
    AIORateLimiter,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from pixie.channels.base import OperatorChannel
from pixie.channels.formatting import TELEGRAM_MAX_LEN, excerpt, split_message
from pixie.config import TelegramConfig
from pixie.types import ChoiceSpec

logger = structlog.get_logger(__name__)

# Typing indicator expires after 5s on Telegram clients; refresh before that.
_TYPING_REFRESH_INTERVAL: float = 4.0

# Pause between consecutive chunks of one long reply.
_CHUNK_PAUSE: float = 0.3

CHOICE_CALLBACK_PREFIX = "model:"

COMMANDS: tuple[str, ...] = ("start", "status", "usage", "restart")


class TelegramChannel(OperatorChannel):
    """Pixie Telegram bot adapter for a single authorized operator."""

    def __init__(self, config: TelegramConfig) -> None:
        super().__init__()
        self._config = config
        self._operator_id = int(config.authorized_user_id)
        self._app = None
        self._started = False

    # ------------------------------------------------------------------
    # OperatorChannel interface
    # ------------------------------------------------------------------

    @property
    def channel_name(self) -> str:
        return "telegram"

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Connect to Telegram and begin polling for updates."""
        builder = ApplicationBuilder().token(self._config.bot_token)
        if self._config.concurrent_updates > 0:
            builder = builder.concurrent_updates(self._config.concurrent_updates)
        builder = builder.rate_limiter(AIORateLimiter(max_retries=3))

        self._app = builder.build()
        self._register_handlers()
        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling(
            drop_pending_updates=True,
            allowed_updates=["message", "callback_query"],
        )
        self._started = True
        logger.info(
            "telegram_channel.started",
            username=getattr(self._app.bot, "username", None),
            operator_id=self._operator_id,
        )

    async def stop(self) -> None:
        """Stop polling and shut down the PTB application."""
        if self._app is None:
            return
        self._started = False
        try:
            await self._app.updater.stop()
            await self._app.stop()
            await self._app.shutdown()
        except Exception:
            logger.exception("telegram_channel.stop_error")
        self._app = None
        logger.info("telegram_channel.stopped")

    async def send_text(self, text: str) -> None:
        if self._app is None:
            logger.warning("telegram_channel.send_before_start", text=excerpt(text))
            return
        chunks = split_message(text, TELEGRAM_MAX_LEN) or ["(empty reply)"]
        for i, chunk in enumerate(chunks):
            await self._app.bot.send_message(chat_id=self._operator_id, text=chunk)
            if i < len(chunks) - 1:
                await asyncio.sleep(_CHUNK_PAUSE)

    async def present_choices(self, prompt: str, choices: Sequence[ChoiceSpec]) -> None:
        if self._app is None:
            logger.warning("telegram_channel.send_before_start", text=excerpt(prompt))
            return
        await self._app.bot.send_message(
            chat_id=self._operator_id,
            text=prompt,
            reply_markup=self._build_keyboard(choices),
        )
        logger.info("telegram_channel.choices_presented", count=len(choices))

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _register_handlers(self) -> None:
        self._app.add_handler(
            CallbackQueryHandler(self._on_choice_callback, pattern=rf"^{CHOICE_CALLBACK_PREFIX}")
        )
        for name in COMMANDS:
            self._app.add_handler(CommandHandler(name, self._on_command))
        self._app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, self._on_message))
        self._app.add_error_handler(self._on_error)

    def _is_operator(self, update: Update) -> bool:
        user = update.effective_user
        if user is not None and user.id == self._operator_id:
            return True
        logger.info(
            "telegram_channel.unauthorized_ignored",
            user_id=getattr(user, "id", None),
        )
        return False

    @staticmethod
    def _build_keyboard(choices: Sequence[ChoiceSpec]) -> InlineKeyboardMarkup:
        """One button per row; callback data is ``model:<value>``."""
        rows = []
        for spec in choices:
            data = f"{CHOICE_CALLBACK_PREFIX}{spec.value}"
            # Telegram callback_data is limited to 64 bytes (UTF-8 encoded).
            if len(data.encode("utf-8")) > 64:
                logger.warning("telegram_channel.callback_data_truncated", value=spec.value)
                data = data.encode("utf-8")[:64].decode("utf-8", errors="ignore")
            rows.append([InlineKeyboardButton(spec.label, callback_data=data)])
        return InlineKeyboardMarkup(rows)

    async def _on_choice_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        if query is None or not self._is_operator(update):
            return
        value = (query.data or "").removeprefix(CHOICE_CALLBACK_PREFIX)
        await query.answer(f"Selected {value}")
        try:
            await query.edit_message_reply_markup(reply_markup=None)
        except BadRequest:
            logger.debug("telegram_channel.keyboard_already_removed")
        await self.handler.on_choice(value)

    async def _on_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.message is None or not self._is_operator(update):
            return
        text = update.message.text or ""
        name = text.split()[0].lstrip("/").split("@")[0].lower() if text else ""
        logger.info("telegram_channel.command", name=name)
        await self.handler.on_command(name)

    async def _on_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.message
        if message is None or not message.text or not self._is_operator(update):
            return
        logger.info("telegram_channel.message_received", text=excerpt(message.text))
        typing_task = asyncio.create_task(self._keep_typing())
        try:
            await self.handler.on_message(message.text)
        finally:
            typing_task.cancel()

    async def _keep_typing(self) -> None:
        """Refresh the typing indicator every 4s until cancelled."""
        try:
            while True:
                await self._app.bot.send_chat_action(chat_id=self._operator_id, action="typing")
                await asyncio.sleep(_TYPING_REFRESH_INTERVAL)
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.debug("telegram_channel.typing_failed", exc_info=True)

    @staticmethod
    async def _on_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Route unhandled PTB exceptions through structlog."""
        error = context.error
        update_id = getattr(update, "update_id", None)

        if isinstance(error, RetryAfter):
            logger.warning(
                "telegram_channel.rate_limited",
                retry_after=error.retry_after,
                update_id=update_id,
            )
        elif isinstance(error, (TimedOut, NetworkError)):
            logger.warning(
                "telegram_channel.network_error",
                error=str(error),
                update_id=update_id,
            )
        elif isinstance(error, Forbidden):
            logger.warning(
                "telegram_channel.forbidden",
                error=str(error),
                update_id=update_id,
            )
        else:
            logger.error(
                "telegram_channel.unhandled_error",
                error=str(error),
                update_id=update_id,
                exc_info=error,
            )
