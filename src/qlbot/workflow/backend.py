"""Task backend consumed by the workflow engine."""

from typing import Protocol


class TaskBackend(Protocol):
    """Stores scripts and registers scheduled jobs.

    Both calls raise on failure. They are not idempotent and the engine
    never retries them.
    """

    async def upload_script(self, file_name: str, content: str) -> None: ...

    async def create_cron_job(self, name: str, command: str, schedule: str) -> None: ...
