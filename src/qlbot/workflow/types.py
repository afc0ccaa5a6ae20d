"""Type definitions for the upload workflow.

Defines the task parameters handed to the backend, the per-stage session
states, the inbound events and the inline button tokens.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Protocol

from pydantic import BaseModel, ConfigDict, Field

REQUIRED_PARAM_FIELDS = ("name", "command", "schedule")


class TaskParams(BaseModel):
    """Parameters of a scheduled task.

    Attributes:
        name: Display name of the task.
        command: Command the panel runs (e.g., ``task demo.py``).
        schedule: Five-field cron expression.
    """

    model_config = ConfigDict(frozen=True, strict=True)

    name: str = Field(..., min_length=1, description="Task name")
    command: str = Field(..., min_length=1, description="Command to execute")
    schedule: str = Field(..., min_length=1, description="Cron expression")


class Stage(str, Enum):
    """Workflow stage of an active session."""

    UPLOADED = "uploaded"
    AWAITING_MODIFY_DECISION = "awaiting_modify_decision"
    AWAITING_JSON_PARAMS = "awaiting_json_params"
    AWAITING_CONFIRMATION = "awaiting_confirmation"


@dataclass(frozen=True)
class Uploaded:
    """File accepted; the user picks what to do with it."""

    stage: ClassVar[Stage] = Stage.UPLOADED


@dataclass(frozen=True)
class AwaitingModifyDecision:
    """Default parameters shown; the user decides whether to edit them."""

    stage: ClassVar[Stage] = Stage.AWAITING_MODIFY_DECISION


@dataclass(frozen=True)
class AwaitingJsonParams:
    """An editable template was sent; waiting for a JSON reply."""

    stage: ClassVar[Stage] = Stage.AWAITING_JSON_PARAMS

    template: TaskParams


@dataclass(frozen=True)
class AwaitingConfirmation:
    """Edited parameters received; waiting for confirm, edit or cancel."""

    stage: ClassVar[Stage] = Stage.AWAITING_CONFIRMATION

    candidate: TaskParams


SessionState = Uploaded | AwaitingModifyDecision | AwaitingJsonParams | AwaitingConfirmation


class TimerHandle(Protocol):
    """A pending delayed action that can be cancelled."""

    def cancel(self) -> None: ...


@dataclass
class Session:
    """One user's in-progress upload.

    Attributes:
        user_id: Telegram user the session belongs to.
        file_name: Original name of the uploaded file.
        file_content: Text content of the uploaded file.
        default_params: Parameters derived from the file at intake.
        state: Current stage and the data that stage carries.
        expiry: Pending expiry action, if armed.
    """

    user_id: int
    file_name: str
    file_content: str
    default_params: TaskParams
    state: SessionState = field(default_factory=Uploaded)
    expiry: TimerHandle | None = field(default=None, repr=False)

    @property
    def stage(self) -> Stage:
        return self.state.stage

    @property
    def candidate_params(self) -> TaskParams | None:
        if isinstance(self.state, AwaitingConfirmation):
            return self.state.candidate
        return None


class Action(str, Enum):
    """Callback tokens carried by the workflow's inline buttons."""

    CREATE_TASK = "wf:create"
    UPLOAD_ONLY = "wf:upload"
    END_SESSION = "wf:end"
    MODIFY_YES = "wf:modify:yes"
    MODIFY_NO = "wf:modify:no"
    BACK = "wf:back"
    CONFIRM = "wf:confirm"
    EDIT = "wf:edit"
    CANCEL = "wf:cancel"


@dataclass(frozen=True)
class Button:
    """An inline button: a label and the token sent back when pressed."""

    label: str
    action: Action


Keyboard = list[list[Button]]


@dataclass(frozen=True)
class IncomingFile:
    """A document attached to a message."""

    user_id: int | None
    chat_id: int
    file_id: str
    file_name: str | None


@dataclass(frozen=True)
class ButtonPress:
    """An inline button was pressed."""

    user_id: int | None
    chat_id: int
    callback_id: str
    data: str
    message_id: int | None = None


@dataclass(frozen=True)
class IncomingText:
    """A plain text message."""

    user_id: int | None
    chat_id: int
    text: str
