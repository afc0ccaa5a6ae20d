"""Upload workflow: sessions, cron extraction and the state machine.

Example:
    from qlbot.workflow import AsyncioScheduler, SessionStore, WorkflowEngine

    scheduler = AsyncioScheduler()
    store = SessionStore(scheduler)
    engine = WorkflowEngine(store, transport, backend, scheduler)
"""

from qlbot.workflow.backend import TaskBackend
from qlbot.workflow.cron import DEFAULT_SCHEDULE, describe_cron, extract_cron, next_run
from qlbot.workflow.engine import WorkflowEngine
from qlbot.workflow.store import SessionStore
from qlbot.workflow.timers import AsyncioScheduler, Scheduler
from qlbot.workflow.transport import Transport
from qlbot.workflow.types import (
    Action,
    AwaitingConfirmation,
    AwaitingJsonParams,
    AwaitingModifyDecision,
    Button,
    ButtonPress,
    IncomingFile,
    IncomingText,
    Keyboard,
    Session,
    Stage,
    TaskParams,
    Uploaded,
)

__all__ = [
    # Engine
    "WorkflowEngine",
    # Store
    "SessionStore",
    "Session",
    "Stage",
    "Uploaded",
    "AwaitingModifyDecision",
    "AwaitingJsonParams",
    "AwaitingConfirmation",
    "TaskParams",
    # Timers
    "Scheduler",
    "AsyncioScheduler",
    # Events and buttons
    "IncomingFile",
    "ButtonPress",
    "IncomingText",
    "Action",
    "Button",
    "Keyboard",
    # Collaborators
    "Transport",
    "TaskBackend",
    # Cron helpers
    "DEFAULT_SCHEDULE",
    "extract_cron",
    "next_run",
    "describe_cron",
]
