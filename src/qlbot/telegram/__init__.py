"""Telegram integration for the Qinglong bot."""

from qlbot.telegram.bot import TelegramBot
from qlbot.telegram.service import TelegramService
from qlbot.telegram.transport import TelegramTransport

__all__ = ["TelegramBot", "TelegramService", "TelegramTransport"]
