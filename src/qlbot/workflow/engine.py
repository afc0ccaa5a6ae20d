"""Workflow engine for script uploads.

Interprets inbound chat events against the user's session and drives the
upload flow:

    file received -> Uploaded
        create task -> AwaitingModifyDecision
            no  -> upload + register with defaults -> done
            yes -> AwaitingJsonParams (timed)
                JSON params -> AwaitingConfirmation (timed)
                    confirm -> upload + register -> done
                    edit    -> AwaitingJsonParams
                    cancel  -> done
        upload only -> upload -> done
    end session (any stage) -> done

Each handler catches its own failures so that one bad update never stops
the polling loop.
"""

import html
import json
import logging
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from qlbot.workflow.backend import TaskBackend
from qlbot.workflow.cron import describe_cron, next_run
from qlbot.workflow.store import SessionStore
from qlbot.workflow.timers import Scheduler
from qlbot.workflow.transport import Transport
from qlbot.workflow.types import (
    REQUIRED_PARAM_FIELDS,
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
)

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = ("js", "py", "sh", "ts", "mjs", "txt")
DEFAULT_EDIT_TIMEOUT = 120.0
DEFAULT_NOTICE_TTL = 10.0

SESSION_EXPIRED_TEXT = "Session expired, please upload the file again."
STALE_BUTTON_TEXT = "This button is no longer active."
TIMEOUT_TEXT = "⏰ Parameter editing timed out and the session has ended. Please upload the file again."

FILE_MENU: Keyboard = [
    [Button("📋 Create task", Action.CREATE_TASK), Button("📤 Upload only", Action.UPLOAD_ONLY)],
    [Button("❌ End session", Action.END_SESSION)],
]

MODIFY_MENU: Keyboard = [
    [Button("✅ Yes, edit them", Action.MODIFY_YES), Button("❌ No, use defaults", Action.MODIFY_NO)],
    [Button("❌ End session", Action.END_SESSION)],
]

EDIT_MENU: Keyboard = [
    [Button("⬆️ Back", Action.BACK), Button("❌ End session", Action.END_SESSION)],
]

CONFIRM_MENU: Keyboard = [
    [Button("✅ Confirm", Action.CONFIRM), Button("✏️ Edit again", Action.EDIT)],
    [Button("❌ Cancel", Action.CANCEL)],
]

# Stage each button belongs to. END_SESSION is accepted at any stage.
_ACTION_STAGES: dict[Action, Stage] = {
    Action.CREATE_TASK: Stage.UPLOADED,
    Action.UPLOAD_ONLY: Stage.UPLOADED,
    Action.MODIFY_YES: Stage.AWAITING_MODIFY_DECISION,
    Action.MODIFY_NO: Stage.AWAITING_MODIFY_DECISION,
    Action.BACK: Stage.AWAITING_JSON_PARAMS,
    Action.CONFIRM: Stage.AWAITING_CONFIRMATION,
    Action.EDIT: Stage.AWAITING_CONFIRMATION,
    Action.CANCEL: Stage.AWAITING_CONFIRMATION,
}


def _escape(text: str) -> str:
    return html.escape(text, quote=False)


def _params_block(params: TaskParams) -> str:
    """Render parameters as a copyable JSON block."""
    payload = json.dumps(params.model_dump(), indent=2, ensure_ascii=False)
    return f"<pre><code>{_escape(payload)}</code></pre>"


def _is_present(value: Any) -> bool:
    if isinstance(value, str):
        return bool(value.strip())
    return bool(value)


def file_extension(file_name: str) -> str:
    """Get the lower-cased extension of a file name, or an empty string."""
    if "." not in file_name:
        return ""
    return file_name.rsplit(".", 1)[1].lower()


class WorkflowEngine:
    """State machine driving the upload and task creation flow.

    Example:
        scheduler = AsyncioScheduler()
        store = SessionStore(scheduler)
        engine = WorkflowEngine(store, transport, backend, scheduler)

        await engine.handle_file(IncomingFile(...))
        await engine.handle_button(ButtonPress(...))
        consumed = await engine.handle_text(IncomingText(...))
    """

    def __init__(
        self,
        store: SessionStore,
        transport: Transport,
        backend: TaskBackend,
        scheduler: Scheduler,
        supported_extensions: tuple[str, ...] | list[str] = DEFAULT_EXTENSIONS,
        edit_timeout: float = DEFAULT_EDIT_TIMEOUT,
        notice_ttl: float = DEFAULT_NOTICE_TTL,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Session store shared by all handlers.
            transport: Chat transport for replies and downloads.
            backend: Task backend for uploads and job registration.
            scheduler: Runs delayed clean-up of short-lived notices.
            supported_extensions: File extensions accepted for upload.
            edit_timeout: Seconds allowed for answering a parameter prompt.
            notice_ttl: Seconds before a cancellation notice is removed.
        """
        self._store = store
        self._transport = transport
        self._backend = backend
        self._scheduler = scheduler
        self._extensions = tuple(ext.lower().lstrip(".") for ext in supported_extensions)
        self._edit_timeout = edit_timeout
        self._notice_ttl = notice_ttl

        self._button_handlers: dict[Action, Callable[[ButtonPress, Session], Awaitable[None]]] = {
            Action.CREATE_TASK: self._on_create_task,
            Action.UPLOAD_ONLY: self._on_upload_only,
            Action.END_SESSION: self._on_end_session,
            Action.MODIFY_YES: self._on_modify_yes,
            Action.MODIFY_NO: self._on_modify_no,
            Action.BACK: self._on_back,
            Action.CONFIRM: self._on_confirm,
            Action.EDIT: self._on_edit,
            Action.CANCEL: self._on_cancel,
        }

    @property
    def supported_extensions(self) -> tuple[str, ...]:
        return self._extensions

    def is_supported(self, file_name: str) -> bool:
        return file_extension(file_name) in self._extensions

    # ------------------------------------------------------------------
    # File intake
    # ------------------------------------------------------------------

    async def handle_file(self, event: IncomingFile) -> None:
        """Accept an uploaded script and start a session for it."""
        try:
            await self._intake(event)
        except Exception as e:
            logger.exception(f"Error handling file upload: {e}")
            await self._send_quietly(event.chat_id, f"❌ File upload failed: {_escape(str(e))}")

    async def _intake(self, event: IncomingFile) -> None:
        if not event.file_name:
            await self._transport.send(event.chat_id, "Unable to read the file name.")
            return

        if not self.is_supported(event.file_name):
            await self._transport.send(
                event.chat_id,
                f"Unsupported file type. Supported types: {', '.join(self._extensions)}",
            )
            return

        if event.user_id is None:
            await self._transport.send(event.chat_id, "Unable to identify the user.")
            return

        progress = await self._transport.send(event.chat_id, "Downloading file...")
        try:
            content = await self._transport.fetch_file(event.file_id)
        except Exception as e:
            logger.error(f"Failed to download {event.file_name}: {e}")
            await self._transport.delete(event.chat_id, progress)
            await self._transport.send(event.chat_id, f"❌ File download failed: {_escape(str(e))}")
            return
        await self._transport.delete(event.chat_id, progress)

        self._store.create(event.user_id, event.file_name, content)
        await self._transport.send(
            event.chat_id,
            f"✅ File received!\n\nFile name: <code>{_escape(event.file_name)}</code>\n\n"
            "Choose the next step:",
            FILE_MENU,
        )

    # ------------------------------------------------------------------
    # Buttons
    # ------------------------------------------------------------------

    async def handle_button(self, event: ButtonPress) -> None:
        """Handle an inline button press."""
        try:
            await self._dispatch_button(event)
        except Exception as e:
            logger.exception(f"Error handling button {event.data!r}: {e}")
            await self._transport.answer(event.callback_id, f"Operation failed: {e}")

    async def _dispatch_button(self, event: ButtonPress) -> None:
        try:
            action = Action(event.data)
        except ValueError:
            logger.debug(f"Ignoring unknown callback data: {event.data!r}")
            await self._transport.answer(event.callback_id)
            return

        if event.user_id is None:
            await self._transport.answer(event.callback_id, "Unable to identify the user.")
            return

        session = self._store.get(event.user_id)
        if session is None:
            await self._transport.answer(event.callback_id, SESSION_EXPIRED_TEXT)
            await self._transport.send(event.chat_id, SESSION_EXPIRED_TEXT)
            return

        expected = _ACTION_STAGES.get(action)
        if expected is not None and session.stage != expected:
            logger.info(
                f"Stale button {action.value} from user {event.user_id} "
                f"at stage {session.stage.value}"
            )
            await self._transport.answer(event.callback_id, STALE_BUTTON_TEXT)
            return

        # The press wins over a pending expiry; handlers entering a timed
        # stage arm a new one.
        self._store.disarm(event.user_id)
        await self._transport.answer(event.callback_id)
        await self._button_handlers[action](event, session)

    async def _on_create_task(self, event: ButtonPress, session: Session) -> None:
        await self._transport.delete(event.chat_id, event.message_id)
        self._store.update(session.user_id, state=AwaitingModifyDecision())
        await self._transport.send(event.chat_id, self._modify_prompt(session), MODIFY_MENU)

    async def _on_upload_only(self, event: ButtonPress, session: Session) -> None:
        await self._transport.delete(event.chat_id, event.message_id)
        self._store.disarm(session.user_id)

        progress = None
        try:
            progress = await self._transport.send(event.chat_id, "Uploading script to Qinglong...")
            await self._backend.upload_script(session.file_name, session.file_content)
        except Exception as e:
            logger.error(f"Script upload failed for user {session.user_id}: {e}")
            await self._transport.delete(event.chat_id, progress)
            self._store.delete(session.user_id)
            await self._transport.send(event.chat_id, f"❌ Script upload failed: {_escape(str(e))}")
            return

        await self._transport.delete(event.chat_id, progress)
        self._store.delete(session.user_id)
        await self._transport.send(
            event.chat_id,
            f"✅ Script uploaded!\n\nFile name: <code>{_escape(session.file_name)}</code>",
        )

    async def _on_end_session(self, event: ButtonPress, session: Session) -> None:
        await self._finish_with_notice(event, session, "⚠️ Upload cancelled.")

    async def _on_cancel(self, event: ButtonPress, session: Session) -> None:
        await self._finish_with_notice(event, session, "⚠️ Task creation cancelled.")

    async def _on_modify_yes(self, event: ButtonPress, session: Session) -> None:
        await self._prompt_for_params(event, session, session.default_params)

    async def _on_modify_no(self, event: ButtonPress, session: Session) -> None:
        await self._transport.delete(event.chat_id, event.message_id)
        await self._create_task(event.chat_id, session, session.default_params)

    async def _on_back(self, event: ButtonPress, session: Session) -> None:
        self._store.disarm(session.user_id)
        self._store.update(session.user_id, state=AwaitingModifyDecision())
        await self._transport.edit(
            event.chat_id, event.message_id, self._modify_prompt(session), MODIFY_MENU
        )

    async def _on_confirm(self, event: ButtonPress, session: Session) -> None:
        candidate = session.candidate_params
        if candidate is None:
            return
        await self._transport.delete(event.chat_id, event.message_id)
        await self._create_task(event.chat_id, session, candidate)

    async def _on_edit(self, event: ButtonPress, session: Session) -> None:
        candidate = session.candidate_params
        if candidate is None:
            return
        await self._prompt_for_params(event, session, candidate)

    # ------------------------------------------------------------------
    # Text
    # ------------------------------------------------------------------

    async def handle_text(self, event: IncomingText) -> bool:
        """Handle edited parameters sent as a JSON message.

        Returns:
            True if the message was consumed by the workflow; False if it
            should be handled elsewhere.
        """
        if event.user_id is None:
            return False

        session = self._store.get(event.user_id)
        if session is None or session.stage != Stage.AWAITING_JSON_PARAMS:
            return False

        text = event.text.strip()
        if not (text.startswith("{") and text.endswith("}")):
            return False

        try:
            await self._accept_params(event, session, text)
        except Exception as e:
            logger.exception(f"Error handling parameters from user {event.user_id}: {e}")
            await self._send_quietly(event.chat_id, f"❌ Operation failed: {_escape(str(e))}")
        return True

    async def _accept_params(self, event: IncomingText, session: Session, text: str) -> None:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            await self._transport.send(
                event.chat_id,
                f"❌ Invalid JSON: {_escape(e.msg)} (line {e.lineno}, column {e.colno})",
            )
            return

        missing = [name for name in REQUIRED_PARAM_FIELDS if not _is_present(data.get(name))]
        if missing:
            await self._transport.send(
                event.chat_id,
                f"❌ Missing required fields: {', '.join(missing)}. "
                "The parameters must include name, command and schedule.",
            )
            return

        try:
            params = TaskParams.model_validate({name: data[name] for name in REQUIRED_PARAM_FIELDS})
        except ValidationError as e:
            fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
            await self._transport.send(
                event.chat_id, f"❌ These fields must be text: {', '.join(fields)}"
            )
            return

        self._store.disarm(session.user_id)
        try:
            await self._transport.send(event.chat_id, self._confirm_prompt(params), CONFIRM_MENU)
        except Exception:
            # Still editing: the user can send the parameters again
            self._arm_expiry(session.user_id, event.chat_id)
            raise

        self._store.update(session.user_id, state=AwaitingConfirmation(candidate=params))
        self._arm_expiry(session.user_id, event.chat_id)

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    async def _prompt_for_params(
        self,
        event: ButtonPress,
        session: Session,
        template: TaskParams,
    ) -> None:
        self._store.update(session.user_id, state=AwaitingJsonParams(template=template))
        self._arm_expiry(session.user_id, event.chat_id)
        await self._transport.edit(
            event.chat_id, event.message_id, self._template_prompt(template), EDIT_MENU
        )

    def _arm_expiry(self, user_id: int, chat_id: int) -> None:
        async def on_expire() -> None:
            await self._send_quietly(chat_id, TIMEOUT_TEXT)

        self._store.arm_expiry(user_id, self._edit_timeout, on_expire)

    async def _create_task(self, chat_id: int, session: Session, params: TaskParams) -> None:
        """Upload the script, register the job and end the session."""
        self._store.disarm(session.user_id)

        progress = None
        try:
            progress = await self._transport.send(chat_id, "Uploading script to Qinglong...")
            await self._backend.upload_script(session.file_name, session.file_content)
            await self._transport.delete(chat_id, progress)

            progress = await self._transport.send(chat_id, "Creating scheduled task...")
            await self._backend.create_cron_job(params.name, params.command, params.schedule)
            await self._transport.delete(chat_id, progress)
            progress = None
        except Exception as e:
            logger.error(f"Task creation failed for user {session.user_id}: {e}")
            await self._transport.delete(chat_id, progress)
            self._store.delete(session.user_id)
            await self._transport.send(chat_id, f"❌ Operation failed: {_escape(str(e))}")
            return

        self._store.delete(session.user_id)
        await self._transport.send(
            chat_id,
            "✅ Scheduled task created!\n\n"
            f"Name: {_escape(params.name)}\n"
            f"Command: <code>{_escape(params.command)}</code>\n"
            f"Schedule: <code>{_escape(params.schedule)}</code>",
        )

    async def _finish_with_notice(self, event: ButtonPress, session: Session, text: str) -> None:
        await self._transport.delete(event.chat_id, event.message_id)
        self._store.delete(session.user_id)

        notice = await self._transport.send(event.chat_id, text)
        if notice is not None:
            chat_id = event.chat_id
            self._scheduler.call_later(
                self._notice_ttl,
                lambda: self._transport.delete(chat_id, notice),
            )

    async def _send_quietly(self, chat_id: int, text: str) -> None:
        try:
            await self._transport.send(chat_id, text)
        except Exception as e:
            logger.error(f"Failed to send message to chat {chat_id}: {e}")

    # ------------------------------------------------------------------
    # Message text
    # ------------------------------------------------------------------

    @staticmethod
    def _modify_prompt(session: Session) -> str:
        return (
            "Do you want to change the default parameters?\n\n"
            f"Defaults:\n\n{_params_block(session.default_params)}"
        )

    def _template_prompt(self, template: TaskParams) -> str:
        return (
            "Copy the template below, edit it and send it back to me:\n\n"
            f"{_params_block(template)}\n\n"
            "Fields:\n"
            "• name: task name\n"
            "• command: command to run (e.g. <code>task demo.py</code>)\n"
            "• schedule: cron expression (e.g. <code>0 0 * * *</code> runs daily at midnight)\n\n"
            f"⏱️ Please send the parameters within {self._edit_timeout:g} seconds."
        )

    @staticmethod
    def _confirm_prompt(params: TaskParams) -> str:
        upcoming = next_run(params.schedule)
        if upcoming is None:
            hint = "⚠️ The schedule could not be parsed; the panel may reject it."
        else:
            hint = (
                f"Next run: {upcoming.strftime('%Y-%m-%d %H:%M %Z')} "
                f"({_escape(describe_cron(params.schedule))})"
            )
        return f"Please confirm the task parameters:\n\n{_params_block(params)}\n\n{hint}"
