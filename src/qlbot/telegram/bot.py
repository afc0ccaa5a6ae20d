"""Low-level Telegram bot API wrapper.

Provides a simple async interface for sending, editing and deleting
messages, answering button presses, downloading attachments and
receiving updates via the Telegram Bot API.
"""

import logging
import re
from typing import Any

from telegram import Bot, InlineKeyboardMarkup, Update
from telegram.error import TelegramError
from telegram.request import HTTPXRequest

logger = logging.getLogger(__name__)

DEFAULT_API_ROOT = "https://api.telegram.org"

# HTTP-level timeouts (seconds).  These are independent of the Telegram
# long-polling timeout and ensure that stale / half-open TCP connections
# fail fast instead of hanging.
_CONNECT_TIMEOUT = 10.0
_READ_TIMEOUT = 10.0
_WRITE_TIMEOUT = 10.0
_POOL_TIMEOUT = 5.0

# Telegram rejects messages longer than this
MAX_MESSAGE_LENGTH = 4096

# Room kept in each HTML chunk for re-opening and closing tags
_TAG_RESERVE = 64

# Formatting tags the bot emits; none of them carry attributes
_HTML_TAG = re.compile(r"<(/?)(pre|code|b|i|u|s)>")


def _make_bot(token: str, api_root: str = DEFAULT_API_ROOT, proxy: str | None = None) -> Bot:
    """Create a Bot instance with explicit HTTP timeouts."""
    request = HTTPXRequest(
        connect_timeout=_CONNECT_TIMEOUT,
        read_timeout=_READ_TIMEOUT,
        write_timeout=_WRITE_TIMEOUT,
        pool_timeout=_POOL_TIMEOUT,
        proxy=proxy or None,
    )
    api_root = api_root.rstrip("/")
    return Bot(
        token=token,
        base_url=f"{api_root}/bot",
        base_file_url=f"{api_root}/file/bot",
        request=request,
    )


def _cut_point(line: str, limit: int, html: bool) -> int:
    """Where to cut an over-long line so no tag or entity is split."""
    if not html:
        return limit
    head = line[:limit]
    cut = limit
    lt = head.rfind("<")
    if lt > head.rfind(">"):
        cut = lt
    amp = head.rfind("&")
    if amp > head.rfind(";") and limit - amp <= 10:
        cut = min(cut, amp)
    return cut or limit


def _balance_tags(chunks: list[str]) -> list[str]:
    """Close tags left open at the end of a chunk and re-open them in the next."""
    balanced = []
    carried: list[str] = []
    for chunk in chunks:
        open_tags = list(carried)
        for match in _HTML_TAG.finditer(chunk):
            closing, tag = match.groups()
            if not closing:
                open_tags.append(tag)
            elif open_tags and open_tags[-1] == tag:
                open_tags.pop()
        prefix = "".join(f"<{tag}>" for tag in carried)
        suffix = "".join(f"</{tag}>" for tag in reversed(open_tags))
        balanced.append(prefix + chunk + suffix)
        carried = open_tags
    return balanced


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH, html: bool = False) -> list[str]:
    """Split text into chunks that fit in one message, preferring line breaks.

    With ``html`` set, tags and entities are never cut, and formatting
    open at a chunk boundary is closed there and re-opened in the next
    chunk, so every chunk parses on its own.
    """
    if len(text) <= limit:
        return [text]

    size = limit - _TAG_RESERVE if html else limit
    chunks: list[str] = []
    current = ""
    for line in text.splitlines(keepends=True):
        while len(line) > size:
            if current:
                chunks.append(current)
                current = ""
            cut = _cut_point(line, size, html)
            chunks.append(line[:cut])
            line = line[cut:]
        if len(current) + len(line) > size:
            chunks.append(current)
            current = ""
        current += line
    if current:
        chunks.append(current)
    return _balance_tags(chunks) if html else chunks


class TelegramBot:
    """Simple Telegram bot wrapper using python-telegram-bot.

    This class provides low-level access to the Telegram Bot API
    for the calls the upload workflow needs and for receiving updates
    via long-polling.
    """

    def __init__(
        self,
        token: str,
        api_root: str = DEFAULT_API_ROOT,
        proxy: str | None = None,
    ):
        """Initialize the bot with a token.

        Args:
            token: Telegram bot token from @BotFather
            api_root: Bot API root URL
            proxy: Optional proxy URL for all Telegram requests
        """
        self.token = token
        self.api_root = api_root
        self.proxy = proxy
        self._bot = _make_bot(token, api_root, proxy)

    async def get_me(self) -> dict[str, Any]:
        """Get information about the bot.

        Returns:
            Dictionary with bot info including id, username, first_name

        Raises:
            TelegramError: If the API call fails
        """
        user = await self._bot.get_me()
        return {
            "id": user.id,
            "username": user.username,
            "first_name": user.first_name,
            "is_bot": user.is_bot,
        }

    async def send_message(
        self,
        chat_id: str | int,
        text: str,
        parse_mode: str | None = "HTML",
        reply_markup: InlineKeyboardMarkup | None = None,
    ) -> int:
        """Send a message to a chat.

        Long texts are split into several messages; the keyboard is
        attached to the last one.

        Args:
            chat_id: Telegram chat ID to send to
            text: Message text
            parse_mode: Message parsing mode (Markdown, HTML, or None)
            reply_markup: Optional inline keyboard

        Returns:
            ID of the last message sent

        Raises:
            TelegramError: If the API call fails
        """
        chunks = split_message(text, html=parse_mode == "HTML")
        message = None
        for i, chunk in enumerate(chunks):
            message = await self._bot.send_message(
                chat_id=chat_id,
                text=chunk,
                parse_mode=parse_mode,
                reply_markup=reply_markup if i == len(chunks) - 1 else None,
            )
        return message.message_id

    async def edit_message_text(
        self,
        chat_id: str | int,
        message_id: int,
        text: str,
        parse_mode: str | None = "HTML",
        reply_markup: InlineKeyboardMarkup | None = None,
    ) -> None:
        """Replace the text and keyboard of a message.

        Raises:
            TelegramError: If the API call fails
        """
        await self._bot.edit_message_text(
            text=text,
            chat_id=chat_id,
            message_id=message_id,
            parse_mode=parse_mode,
            reply_markup=reply_markup,
        )

    async def delete_message(self, chat_id: str | int, message_id: int) -> None:
        """Delete a message.

        Raises:
            TelegramError: If the API call fails
        """
        await self._bot.delete_message(chat_id=chat_id, message_id=message_id)

    async def answer_callback_query(self, callback_query_id: str, text: str | None = None) -> None:
        """Acknowledge a button press, optionally showing a short notice.

        Raises:
            TelegramError: If the API call fails
        """
        await self._bot.answer_callback_query(callback_query_id=callback_query_id, text=text)

    async def download_file(self, file_id: str) -> bytes:
        """Download an attachment.

        Args:
            file_id: Telegram file ID

        Returns:
            Raw file content

        Raises:
            TelegramError: If the API call fails
        """
        file = await self._bot.get_file(file_id)
        data = await file.download_as_bytearray()
        return bytes(data)

    async def get_updates(
        self,
        offset: int | None = None,
        timeout: int = 30,
    ) -> list[Update]:
        """Get new updates via long-polling.

        Args:
            offset: Identifier of the first update to be returned
            timeout: Timeout in seconds for long polling

        Returns:
            List of Update objects
        """
        updates = await self._bot.get_updates(
            offset=offset,
            timeout=timeout,
            allowed_updates=["message", "callback_query"],
        )
        return list(updates)

    async def refresh(self) -> None:
        """Shut down the current connection pool and create a fresh Bot.

        Call this after detecting a stale connection to flush dead TCP
        sockets from the httpx pool.
        """
        try:
            await self._bot.shutdown()
        except Exception as e:
            logger.debug(f"Ignoring error while shutting down stale bot: {e}")
        self._bot = _make_bot(self.token, self.api_root, self.proxy)
        logger.info("Telegram bot connection refreshed")

    async def close(self) -> None:
        """Close the bot connection."""
        await self._bot.shutdown()


async def validate_token(
    token: str,
    api_root: str = DEFAULT_API_ROOT,
    proxy: str | None = None,
) -> tuple[bool, str]:
    """Validate a Telegram bot token by calling getMe.

    Args:
        token: Telegram bot token to validate
        api_root: Bot API root URL
        proxy: Optional proxy URL

    Returns:
        Tuple of (success, message) where message is either
        the bot username or an error description
    """
    if not token or ":" not in token:
        return False, "Invalid token format (expected 'ID:SECRET')"

    try:
        bot = TelegramBot(token, api_root, proxy)
        info = await bot.get_me()
        await bot.close()
        return True, f"@{info['username']}"
    except TelegramError as e:
        return False, f"API error: {e.message}"
    except Exception as e:
        return False, f"Connection error: {e}"
