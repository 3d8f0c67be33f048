"""Inbound callback models for results pushed back by remote workers."""

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# Session lifecycle notifications the platform acts on
RECOGNIZED_CALLBACK_EVENTS: frozenset[str] = frozenset(
    {
        "session.started",
        "session.progress",
        "session.waiting_input",
        "session.completed",
        "session.error",
    }
)


class CallbackData(BaseModel):
    """Event-specific data sent by a remote worker.

    Unknown keys are kept so newer workers can send extra fields.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    message: str | None = None
    summary: str | None = None
    files: list[str] | None = None
    pr_url: str | None = Field(default=None, alias="prUrl")
    error: str | None = None
    question: str | None = None
    options: list[str] | None = None
    changes: list[str] | None = None
    diff: str | None = None


class CallbackPayload(BaseModel):
    """Body of a callback from a remote worker.

    The event is a plain string: unrecognized event types are accepted and
    ignored rather than rejected.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    event: str = Field(min_length=1)
    timestamp: str
    session_id: str = Field(alias="sessionId")
    task_id: str = Field(
        validation_alias=AliasChoices("taskId", "correlationId", "task_id"),
        serialization_alias="taskId",
    )
    data: CallbackData | None = None

    @property
    def recognized(self) -> bool:
        return self.event in RECOGNIZED_CALLBACK_EVENTS


class VerifiedCallback(BaseModel):
    """A callback whose signature and timestamp have been checked."""

    payload: CallbackPayload
    secret_source: Literal["owner", "fallback"]
    header_event: str = "unknown"

    @property
    def recognized(self) -> bool:
        return self.payload.recognized

    def summary(self) -> dict[str, Any]:
        """Fields echoed back to the worker on success."""
        return {
            "event": self.payload.event,
            "taskId": self.payload.task_id,
            "sessionId": self.payload.session_id,
        }
