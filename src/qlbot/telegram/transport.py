"""Telegram implementation of the workflow transport."""

import asyncio
import logging

from telegram import InlineKeyboardButton, InlineKeyboardMarkup
from telegram.error import TelegramError

from qlbot.telegram.bot import TelegramBot
from qlbot.workflow.types import Keyboard

logger = logging.getLogger(__name__)


def build_keyboard(buttons: Keyboard | None) -> InlineKeyboardMarkup | None:
    """Convert workflow buttons into a Telegram inline keyboard."""
    if not buttons:
        return None
    return InlineKeyboardMarkup(
        [
            [InlineKeyboardButton(button.label, callback_data=button.action.value) for button in row]
            for row in buttons
        ]
    )


def _decode(file_id: str, data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        logger.warning(
            f"File {file_id} is not valid UTF-8 (byte {e.start}); "
            "undecodable bytes were replaced"
        )
        return data.decode("utf-8", errors="replace")


class TelegramTransport:
    """Sends workflow messages through a TelegramBot.

    Edits fall back to sending a new message, and deletions or callback
    answers that fail are only logged, so a flaky API call never aborts
    the workflow.
    """

    def __init__(
        self,
        bot: TelegramBot,
        download_retries: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        """Initialize the transport.

        Args:
            bot: Telegram bot wrapper
            download_retries: Attempts for fetching an attachment
            retry_delay: Base delay between attempts; attempt N waits N * delay
        """
        self.bot = bot
        self._download_retries = max(1, download_retries)
        self._retry_delay = retry_delay

    async def send(
        self,
        chat_id: int,
        text: str,
        buttons: Keyboard | None = None,
    ) -> int | None:
        return await self.bot.send_message(chat_id, text, reply_markup=build_keyboard(buttons))

    async def edit(
        self,
        chat_id: int,
        message_id: int | None,
        text: str,
        buttons: Keyboard | None = None,
    ) -> int | None:
        if message_id is not None:
            try:
                await self.bot.edit_message_text(
                    chat_id, message_id, text, reply_markup=build_keyboard(buttons)
                )
                return message_id
            except TelegramError as e:
                logger.warning(f"Failed to edit message {message_id}, sending a new one: {e}")
        return await self.send(chat_id, text, buttons)

    async def delete(self, chat_id: int, message_id: int | None) -> None:
        if message_id is None:
            return
        try:
            await self.bot.delete_message(chat_id, message_id)
        except TelegramError as e:
            logger.warning(f"Failed to delete message {message_id}: {e}")

    async def answer(self, callback_id: str, text: str | None = None) -> None:
        try:
            await self.bot.answer_callback_query(callback_id, text)
        except TelegramError as e:
            logger.warning(f"Failed to answer callback query: {e}")

    async def fetch_file(self, file_id: str) -> str:
        """Download an attachment as UTF-8 text, retrying transient failures.

        Bytes that are not valid UTF-8 are replaced and a warning is logged.

        Raises:
            TelegramError: If every attempt fails
        """
        last_error: Exception | None = None
        for attempt in range(1, self._download_retries + 1):
            try:
                data = await self.bot.download_file(file_id)
            except TelegramError as e:
                last_error = e
                logger.error(f"Download attempt {attempt} for {file_id} failed: {e}")
                if attempt < self._download_retries:
                    await asyncio.sleep(attempt * self._retry_delay)
            else:
                return _decode(file_id, data)

        raise last_error or TelegramError("File download failed")
