"""Telegram service for the Qinglong bot.

Polls Telegram for updates and routes documents, button presses and
text messages to the workflow engine.
"""

import asyncio
import logging
import time

from telegram import CallbackQuery, Message, Update
from telegram.error import TelegramError

from qlbot.telegram.bot import DEFAULT_API_ROOT, TelegramBot
from qlbot.telegram.transport import TelegramTransport
from qlbot.workflow.engine import WorkflowEngine
from qlbot.workflow.types import ButtonPress, IncomingFile, IncomingText

logger = logging.getLogger(__name__)

# If a single poll cycle takes longer than this (in seconds) the connection
# is likely stale (e.g. the machine went to sleep).  The polling timeout is
# 30 s, so anything significantly beyond that indicates a gap.
_STALE_THRESHOLD_SECS = 45.0

WELCOME_TEXT = "Welcome to the Qinglong bot!"

USAGE_TEXT = (
    "Send me a script file ({extensions}) and I will upload it to your "
    "Qinglong panel. You can then create a scheduled task for it, with the "
    "default parameters or your own."
)


class TelegramService:
    """Telegram integration service for the upload workflow.

    This service:
    - Polls Telegram for messages and button presses
    - Hands documents, button presses and text to the workflow engine
    - Answers /start, /help and any text the workflow does not consume

    Updates are processed one at a time, each to completion, which is
    what lets the session store go without locks.
    """

    def __init__(
        self,
        bot_token: str,
        api_root: str = DEFAULT_API_ROOT,
        proxy: str | None = None,
        download_retries: int = 3,
    ):
        """Initialize the Telegram service.

        Args:
            bot_token: Telegram bot token from @BotFather
            api_root: Bot API root URL
            proxy: Optional proxy URL for Telegram requests
            download_retries: Attempts for fetching uploaded files
        """
        self.bot = TelegramBot(bot_token, api_root, proxy)
        self.transport = TelegramTransport(self.bot, download_retries=download_retries)
        self._engine: WorkflowEngine | None = None
        self._running = False
        self._update_offset: int | None = None

    def set_engine(self, engine: WorkflowEngine) -> None:
        """Set the workflow engine that receives updates."""
        self._engine = engine

    def _usage(self) -> str:
        extensions = ", ".join(self._engine.supported_extensions) if self._engine else "scripts"
        return USAGE_TEXT.format(extensions=extensions)

    async def _reply(self, chat_id: int, text: str) -> None:
        try:
            await self.transport.send(chat_id, text)
        except TelegramError as e:
            logger.error(f"Failed to send message: {e}")

    async def _process_callback(self, engine: WorkflowEngine, query: CallbackQuery) -> None:
        user_id = query.from_user.id if query.from_user else None
        message = query.message
        chat_id = message.chat.id if message else user_id
        if chat_id is None:
            return

        logger.info(f"Button {query.data!r} from user {user_id}")
        await engine.handle_button(
            ButtonPress(
                user_id=user_id,
                chat_id=chat_id,
                callback_id=query.id,
                data=query.data or "",
                message_id=message.message_id if message else None,
            )
        )

    async def _process_message(self, engine: WorkflowEngine, message: Message) -> None:
        user_id = message.from_user.id if message.from_user else None
        chat_id = message.chat_id

        if message.document:
            document = message.document
            logger.info(f"Received document {document.file_name!r} from user {user_id}")
            await engine.handle_file(
                IncomingFile(
                    user_id=user_id,
                    chat_id=chat_id,
                    file_id=document.file_id,
                    file_name=document.file_name,
                )
            )
            return

        if not message.text:
            return

        text = message.text
        logger.info(f"Received message from {user_id} in chat {chat_id}: {text[:50]}...")

        if text.startswith("/"):
            command = text.split()[0].split("@")[0].lower()
            if command == "/start":
                await self._reply(chat_id, f"{WELCOME_TEXT}\n\n{self._usage()}")
                return
            if command == "/help":
                await self._reply(chat_id, self._usage())
                return

        consumed = await engine.handle_text(IncomingText(user_id=user_id, chat_id=chat_id, text=text))
        if not consumed:
            await self._reply(chat_id, self._usage())

    async def _process_update(self, update: Update) -> None:
        """Process a single update from Telegram.

        Args:
            update: Telegram Update object
        """
        if self._engine is None:
            logger.warning("No workflow engine configured")
            return

        if update.callback_query:
            await self._process_callback(self._engine, update.callback_query)
        elif update.message:
            await self._process_message(self._engine, update.message)

    async def start(self) -> None:
        """Start the polling loop."""
        self._running = True

        # Get bot info
        try:
            info = await self.bot.get_me()
            logger.info(f"Started Telegram service as @{info['username']}")
        except TelegramError as e:
            logger.error(f"Failed to connect to Telegram: {e}")
            raise

        # Main polling loop
        consecutive_errors = 0
        while self._running:
            poll_start = time.monotonic()
            try:
                updates = await self.bot.get_updates(
                    offset=self._update_offset,
                    timeout=30,
                )

                elapsed = time.monotonic() - poll_start
                consecutive_errors = 0

                # A 30 s long-poll should never take much longer than ~32 s.
                # If it did, the connection pool is likely stale.
                if elapsed > _STALE_THRESHOLD_SECS:
                    logger.warning(
                        "Poll cycle took %.1f s (threshold %.0f s) "
                        "- likely sleep/wake, refreshing connection",
                        elapsed,
                        _STALE_THRESHOLD_SECS,
                    )
                    await self.bot.refresh()

                for update in updates:
                    # Update offset to acknowledge receipt
                    self._update_offset = update.update_id + 1
                    try:
                        await self._process_update(update)
                    except Exception as e:
                        logger.exception(f"Error processing update {update.update_id}: {e}")

            except asyncio.CancelledError:
                break
            except Exception as e:
                consecutive_errors += 1
                elapsed = time.monotonic() - poll_start

                if isinstance(e, TelegramError):
                    logger.error(f"Telegram error: {e}")
                else:
                    logger.exception(f"Unexpected error: {e}")

                # After sleep/wake, errors are expected because the
                # connection pool holds dead sockets; refresh eagerly.
                if elapsed > _STALE_THRESHOLD_SECS:
                    logger.warning(
                        "Error after %.1f s gap - refreshing connection",
                        elapsed,
                    )
                    await self.bot.refresh()
                    consecutive_errors = 0
                    continue  # retry immediately with fresh connection

                # Exponential backoff: 2, 4, 8, ... capped at 60 s
                backoff = min(2 ** consecutive_errors, 60)
                logger.info("Backing off for %d s (attempt %d)", backoff, consecutive_errors)
                await asyncio.sleep(backoff)

        await self.bot.close()
        logger.info("Telegram service stopped")

    async def stop(self) -> None:
        """Stop the polling loop gracefully."""
        self._running = False
