from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from chatloom.message import Message, ToolCall, new_id


class SessionStatus(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    TOOL_CALLING = "tool-calling"
    ERROR = "error"


class SessionState(BaseModel):
    """Snapshot of one chat session.

    Snapshots are frozen. The session replaces its snapshot on every
    transition and publishes the new one, so observers never see a
    half-applied update.

    Example:
        state = session.state
        if state.status is SessionStatus.TOOL_CALLING:
            await session.run_tool(state.current_tool_call)
    """

    model_config = ConfigDict(frozen=True)

    session_id: str = Field(default_factory=new_id)
    messages: tuple[Message, ...] = ()
    status: SessionStatus = SessionStatus.IDLE
    current_tool_call: ToolCall | None = None
    error: str | None = None
