"""Chat transport consumed by the workflow engine."""

from typing import Protocol

from qlbot.workflow.types import Keyboard


class Transport(Protocol):
    """Delivers messages and fetches attachments for the engine.

    Messages are formatted with Telegram HTML. Implementations log and
    swallow failures of ``delete`` and ``answer``; ``edit`` falls back to
    sending a new message.
    """

    async def send(
        self,
        chat_id: int,
        text: str,
        buttons: Keyboard | None = None,
    ) -> int | None:
        """Send a message and return its id."""
        ...

    async def edit(
        self,
        chat_id: int,
        message_id: int | None,
        text: str,
        buttons: Keyboard | None = None,
    ) -> int | None:
        """Replace a message's text and buttons, or send a new one."""
        ...

    async def delete(self, chat_id: int, message_id: int | None) -> None:
        """Delete a message."""
        ...

    async def answer(self, callback_id: str, text: str | None = None) -> None:
        """Acknowledge a button press."""
        ...

    async def fetch_file(self, file_id: str) -> str:
        """Download an attachment as text."""
        ...
