"""Qinglong bot - upload scripts over Telegram and schedule them as cron jobs."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("qinglong-bot")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from qlbot.workflow.engine import WorkflowEngine
from qlbot.workflow.store import SessionStore

__all__ = ["WorkflowEngine", "SessionStore"]
