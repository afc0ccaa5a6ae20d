"""Shared fakes for workflow tests."""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Callable

import pytest

from qlbot.workflow.engine import WorkflowEngine
from qlbot.workflow.store import SessionStore
from qlbot.workflow.types import Action, Keyboard


# ---------------------------------------------------------------------------
# Virtual clock
# ---------------------------------------------------------------------------


class ManualHandle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class _Pending:
    when: float
    seq: int
    handle: ManualHandle
    callback: Callable[[], Any]


class ManualScheduler:
    """Scheduler whose clock only moves when a test advances it."""

    def __init__(self) -> None:
        self.now = 0.0
        self._seq = 0
        self._entries: list[_Pending] = []

    def call_later(self, delay: float, callback: Callable[[], Any]) -> ManualHandle:
        self._seq += 1
        handle = ManualHandle()
        self._entries.append(_Pending(self.now + delay, self._seq, handle, callback))
        return handle

    @property
    def pending(self) -> list[_Pending]:
        return [e for e in self._entries if not e.handle.cancelled]

    async def advance(self, seconds: float) -> None:
        """Move the clock forward, running every action that falls due."""
        target = self.now + seconds
        while True:
            due = sorted(
                (e for e in self.pending if e.when <= target),
                key=lambda e: (e.when, e.seq),
            )
            if not due:
                break
            entry = due[0]
            self._entries.remove(entry)
            self.now = entry.when
            result = entry.callback()
            if inspect.isawaitable(result):
                await result
        self.now = target


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@dataclass
class SentMessage:
    chat_id: int
    text: str
    buttons: Keyboard | None
    message_id: int

    @property
    def actions(self) -> set[Action]:
        return {button.action for row in self.buttons or [] for button in row}


class FakeTransport:
    """Records everything the engine asks the chat transport to do."""

    def __init__(self) -> None:
        self.sent: list[SentMessage] = []
        self.edits: list[SentMessage] = []
        self.deleted: list[tuple[int, int | None]] = []
        self.answers: list[tuple[str, str | None]] = []
        self.files: dict[str, str] = {}
        self.fetch_error: Exception | None = None
        self.send_errors: list[Exception] = []
        self._next_id = 100

    async def send(self, chat_id: int, text: str, buttons: Keyboard | None = None) -> int:
        if self.send_errors:
            raise self.send_errors.pop(0)
        self._next_id += 1
        self.sent.append(SentMessage(chat_id, text, buttons, self._next_id))
        return self._next_id

    async def edit(
        self,
        chat_id: int,
        message_id: int | None,
        text: str,
        buttons: Keyboard | None = None,
    ) -> int | None:
        self.edits.append(SentMessage(chat_id, text, buttons, message_id or 0))
        return message_id

    async def delete(self, chat_id: int, message_id: int | None) -> None:
        self.deleted.append((chat_id, message_id))

    async def answer(self, callback_id: str, text: str | None = None) -> None:
        self.answers.append((callback_id, text))

    async def fetch_file(self, file_id: str) -> str:
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.files[file_id]

    @property
    def last(self) -> SentMessage:
        return self.sent[-1]

    @property
    def texts(self) -> list[str]:
        return [m.text for m in self.sent]


class FakeBackend:
    """Task backend that records calls and can be told to fail."""

    def __init__(self) -> None:
        self.uploads: list[tuple[str, str]] = []
        self.jobs: list[tuple[str, str, str]] = []
        self.upload_error: Exception | None = None
        self.job_error: Exception | None = None

    async def upload_script(self, file_name: str, content: str) -> None:
        if self.upload_error is not None:
            raise self.upload_error
        self.uploads.append((file_name, content))

    async def create_cron_job(self, name: str, command: str, schedule: str) -> None:
        if self.job_error is not None:
            raise self.job_error
        self.jobs.append((name, command, schedule))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def store(scheduler: ManualScheduler) -> SessionStore:
    return SessionStore(scheduler)


@pytest.fixture
def engine(
    store: SessionStore,
    transport: FakeTransport,
    backend: FakeBackend,
    scheduler: ManualScheduler,
) -> WorkflowEngine:
    return WorkflowEngine(store, transport, backend, scheduler, edit_timeout=120, notice_ttl=10)
