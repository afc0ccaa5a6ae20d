"""In-memory session store for the upload workflow.

Holds at most one session per user. Sessions live only as long as the
process; the store is created once and handed to the workflow engine.
"""

import logging
from typing import Any, Callable

from qlbot.workflow.cron import DEFAULT_SCHEDULE, extract_cron
from qlbot.workflow.timers import Scheduler
from qlbot.workflow.types import Session, TaskParams

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TEMPLATE = "task {file_name}"

# Fields fixed for the lifetime of a session
_READ_ONLY_FIELDS = frozenset({"user_id", "file_name", "file_content", "default_params", "expiry"})


class SessionStore:
    """Per-user workflow sessions with cancelable expiry.

    Every handler runs to completion before the next update is taken,
    so operations on one user's session never interleave and no locking
    is needed. An expiry callback is the only thing that runs on its own,
    and it checks that its session is still the current one before acting.

    Example:
        store = SessionStore(AsyncioScheduler())
        session = store.create(user_id, "demo.py", content)
        store.arm_expiry(user_id, 120, notify_timeout)
        ...
        store.delete(user_id)
    """

    def __init__(
        self,
        scheduler: Scheduler,
        command_template: str = DEFAULT_COMMAND_TEMPLATE,
        default_schedule: str = DEFAULT_SCHEDULE,
    ) -> None:
        """Initialize the store.

        Args:
            scheduler: Runs expiry actions after a delay.
            command_template: Command for new tasks; ``{file_name}`` is substituted.
            default_schedule: Schedule used when the script declares none.
        """
        self._scheduler = scheduler
        self._command_template = command_template
        self._default_schedule = default_schedule
        self._sessions: dict[int, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._sessions

    def default_params_for(self, file_name: str, file_content: str) -> TaskParams:
        """Derive task parameters from an uploaded file."""
        schedule = extract_cron(file_content) or self._default_schedule
        return TaskParams(
            name=file_name.split(".")[0] or file_name,
            command=self._command_template.format(file_name=file_name),
            schedule=schedule,
        )

    def create(self, user_id: int, file_name: str, file_content: str) -> Session:
        """Start a new session, replacing any existing one for the user."""
        previous = self._sessions.get(user_id)
        if previous is not None:
            self._cancel_expiry(previous)
            logger.info(f"Replacing session for user {user_id} ({previous.file_name})")

        session = Session(
            user_id=user_id,
            file_name=file_name,
            file_content=file_content,
            default_params=self.default_params_for(file_name, file_content),
        )
        self._sessions[user_id] = session
        logger.info(
            f"Created session for user {user_id}: {file_name}, "
            f"schedule {session.default_params.schedule}"
        )
        return session

    def get(self, user_id: int) -> Session | None:
        """Look up a user's session."""
        return self._sessions.get(user_id)

    def update(self, user_id: int, **fields: Any) -> bool:
        """Merge fields into a user's session.

        Returns:
            True if the session existed and was updated.

        Raises:
            ValueError: If a read-only or unknown field is given.
        """
        read_only = _READ_ONLY_FIELDS.intersection(fields)
        if read_only:
            raise ValueError(f"Cannot update session fields: {', '.join(sorted(read_only))}")

        session = self._sessions.get(user_id)
        if session is None:
            logger.warning(f"Cannot update session for user {user_id}: no session")
            return False

        old_stage = session.stage
        for key, value in fields.items():
            if not hasattr(session, key):
                raise ValueError(f"Unknown session field: {key}")
            setattr(session, key, value)
        logger.debug(f"Updated session for user {user_id}: {old_stage.value} -> {session.stage.value}")
        return True

    def delete(self, user_id: int) -> bool:
        """Remove a user's session and cancel its expiry.

        Returns:
            True if a session was removed.
        """
        session = self._sessions.pop(user_id, None)
        if session is None:
            return False
        self._cancel_expiry(session)
        logger.info(f"Deleted session for user {user_id}")
        return True

    def arm_expiry(
        self,
        user_id: int,
        seconds: float,
        on_expire: Callable[[], Any],
    ) -> bool:
        """Schedule the session to be deleted after ``seconds``.

        Any previously armed expiry is cancelled first. When the expiry
        fires the session is deleted and ``on_expire`` is called; its
        return value may be awaitable.

        Returns:
            True if an expiry was armed.
        """
        session = self._sessions.get(user_id)
        if session is None:
            logger.warning(f"Cannot arm expiry for user {user_id}: no session")
            return False

        self._cancel_expiry(session)

        def fire() -> Any:
            if self._sessions.get(user_id) is not session or session.expiry is not handle:
                return None
            session.expiry = None
            logger.info(f"Session for user {user_id} expired at stage {session.stage.value}")
            self.delete(user_id)
            return on_expire()

        handle = self._scheduler.call_later(seconds, fire)
        session.expiry = handle
        logger.debug(f"Armed {seconds}s expiry for user {user_id}")
        return True

    def disarm(self, user_id: int) -> None:
        """Cancel a pending expiry without deleting the session."""
        session = self._sessions.get(user_id)
        if session is not None:
            self._cancel_expiry(session)

    @staticmethod
    def _cancel_expiry(session: Session) -> None:
        if session.expiry is not None:
            session.expiry.cancel()
            session.expiry = None
