import asyncio
import inspect
import json
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import ValidationError

from chatloom.cancellation import CancellationToken
from chatloom.config import SessionConfig
from chatloom.context import ToolContext
from chatloom.exceptions import (
    HistoryFormatError,
    InvalidInputError,
    SessionBusyError,
    ToolNotFoundError,
)
from chatloom.instrumentation import (
    generation_span,
    record_error,
    record_finish,
    tool_span,
)
from chatloom.memory import MemoryAdapter
from chatloom.message import (
    ContentPart,
    Message,
    MessageRole,
    TextPart,
    ToolCall,
    ToolResultPart,
    ToolUsePart,
    new_id,
)
from chatloom.provider import ChatRequest, ModelProvider
from chatloom.publisher import StatePublisher
from chatloom.state import SessionState, SessionStatus
from chatloom.streaming import DoneFragment, TextFragment, ToolUseFragment
from chatloom.tools import Tool, ToolRegistry

logger = logging.getLogger(__name__)


class _Draft:
    """The assistant message under construction for one ``send()`` call.

    Only the reducer touches the draft. Every commit freezes a new
    :class:`Message` from it, so published snapshots never alias it.
    """

    def __init__(self):
        self.id = new_id()
        self.created_at = datetime.now(timezone.utc)
        self.parts: list[ContentPart] = []

    def add_text(self, chunk: str) -> None:
        if self.parts and isinstance(self.parts[-1], TextPart):
            self.parts[-1] = TextPart(text=self.parts[-1].text + chunk)
        else:
            self.parts.append(TextPart(text=chunk))

    def add_tool_use(self, call: ToolCall) -> None:
        self.parts.append(
            ToolUsePart(name=call.name, args=dict(call.args), id=call.id)
        )

    def freeze(self) -> Message:
        return Message(
            id=self.id,
            role=MessageRole.ASSISTANT,
            content=list(self.parts),
            created_at=self.created_at,
        )


def _error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class ChatSession:
    """Headless controller for one conversation with a model provider.

    The session owns the conversation log, the tool registry and the
    observable :class:`SessionState`. ``send()`` streams one response and
    reduces its fragments into the log. A tool call halts the stream
    and leaves the session in ``tool-calling`` until ``run_tool()``
    executes it, appends the result and lets the model continue.

    At most one generation streams at a time; ``send()`` while
    streaming raises :class:`SessionBusyError`.

    Args:
        provider: Backend producing fragment streams.
        session_id: Identity of the session; generated when omitted.
        memory: Optional store the state is saved to after every change.
        config: Publish intervals, continuation prompt, default model.

    Example::

        session = ChatSession(create_openai_provider())
        session.subscribe(lambda state: print(state.status))
        await session.send("What's the weather in Paris?")
        if session.status is SessionStatus.TOOL_CALLING:
            await session.run_tool(session.current_tool_call)
    """

    def __init__(
        self,
        provider: ModelProvider,
        session_id: str | None = None,
        memory: MemoryAdapter | None = None,
        config: SessionConfig | None = None,
    ):
        if not isinstance(provider, ModelProvider):
            raise TypeError("Provider must be a ModelProvider")
        if session_id is not None and (
            not isinstance(session_id, str) or not session_id
        ):
            raise ValueError("Session ID must be a non-empty string")
        if memory is not None and not isinstance(memory, MemoryAdapter):
            raise TypeError("Memory adapter must be a MemoryAdapter")

        self.provider = provider
        self.memory = memory
        self.config = config or SessionConfig()
        if session_id:
            self._state = SessionState(session_id=session_id)
        else:
            self._state = SessionState()
        self._tools = ToolRegistry()
        self._publisher: StatePublisher[SessionState] = StatePublisher()
        self._token: CancellationToken | None = None
        self._saves: set[asyncio.Task] = set()
        self._save_lock = asyncio.Lock()

    @classmethod
    async def restore(
        cls,
        provider: ModelProvider,
        session_id: str,
        memory: MemoryAdapter,
        config: SessionConfig | None = None,
    ) -> "ChatSession":
        """Build a session seeded from the snapshot stored in *memory*."""
        session = cls(provider, session_id=session_id, memory=memory, config=config)
        await session.load_from_memory()
        return session

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session_id(self) -> str:
        return self._state.session_id

    @property
    def messages(self) -> list[Message]:
        return list(self._state.messages)

    @property
    def status(self) -> SessionStatus:
        return self._state.status

    @property
    def current_tool_call(self) -> ToolCall | None:
        return self._state.current_tool_call

    @property
    def error(self) -> str | None:
        return self._state.error

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def send(
        self,
        content: str | list[ContentPart],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        tools: list[Tool] | None = None,
        system_prompt: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        """Append a user message and stream the model's response.

        Raises:
            InvalidInputError: *content* is empty.
            SessionBusyError: another response is streaming.
            Exception: whatever the provider raised; it is also recorded
                as ``state.error`` with status ``error``.
        """
        if isinstance(content, str):
            if not content.strip():
                raise InvalidInputError("Input cannot be empty")
        elif not content:
            raise InvalidInputError("Input cannot be empty")
        if self._state.status is SessionStatus.STREAMING:
            raise SessionBusyError()

        message_meta = dict(meta or {})
        if model:
            message_meta["model"] = model
        user_message = Message.from_input(content, meta=message_meta or None)
        self._update(
            messages=[*self._state.messages, user_message],
            status=SessionStatus.STREAMING,
            error=None,
        )

        token = CancellationToken()
        self._token = token
        try:
            request = ChatRequest(
                model=model or self.config.default_model,
                messages=list(self._state.messages),
                tools=list(tools) if tools is not None else self._tools.snapshot(),
                temperature=temperature,
                max_tokens=max_tokens,
                system_prompt=system_prompt or self.config.system_prompt,
            )
            async with generation_span(self.session_id, request.model) as span:
                try:
                    halted = await self._run_leg(
                        self._reduce(request, token, span), token
                    )
                except Exception as e:
                    record_error(span, e)
                    raise
        except asyncio.CancelledError:
            self._on_cancelled(token)
            if not token.cancelled:
                raise
            return
        except Exception as e:
            if token.cancelled:
                self._on_cancelled(token)
                return
            self._fail(e)
            raise
        finally:
            self._release(token)

        if not halted and not token.cancelled:
            self._update(status=SessionStatus.IDLE, current_tool_call=None)

    async def _reduce(
        self,
        request: ChatRequest,
        token: CancellationToken,
        span,
    ) -> bool:
        """Apply fragments to the log. Returns True if a tool call halted it."""
        draft = _Draft()
        stream = self.provider.chat(request, cancellation=token)
        if inspect.isawaitable(stream):
            stream = await stream
        try:
            async for fragment in stream:
                if isinstance(fragment, TextFragment):
                    draft.add_text(fragment.chunk)
                    self._commit(draft)
                elif isinstance(fragment, ToolUseFragment):
                    args = json.loads(fragment.args_delta) if fragment.args_delta else {}
                    call = ToolCall(id=fragment.id, name=fragment.name, args=args)
                    draft.add_tool_use(call)
                    self._commit(
                        draft,
                        status=SessionStatus.TOOL_CALLING,
                        current_tool_call=call,
                    )
                    # Fragments after a tool call are never applied.
                    return True
                elif isinstance(fragment, DoneFragment):
                    record_finish(span, fragment.finish_reason)
                    break
                else:
                    logger.warning(f"Ignoring unknown fragment: {fragment!r}")
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
        return False

    def _commit(self, draft: _Draft, **changes) -> None:
        message = draft.freeze()
        messages = list(self._state.messages)
        for i in range(len(messages) - 1, -1, -1):
            if messages[i].id == message.id:
                messages[i] = message
                break
        else:
            messages.append(message)
        self._update(messages=messages, **changes)

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def run_tool(self, call: ToolCall | Mapping[str, Any]) -> Any:
        """Execute a tool call, record its result and continue generation.

        The continuation is a ``send()`` of the configured continuation
        prompt, reusing the model named in the first message's metadata.
        It runs once per tool call. When several calls run in parallel,
        every continuation after the first one that starts streaming
        raises :class:`SessionBusyError`; their tool results are still
        in the log.

        Returns:
            The executor's result, or ``None`` if the call was stopped.

        Raises:
            InvalidInputError: *call* lacks a name or an id.
            ToolNotFoundError: no tool is registered under the name.
            Exception: whatever the executor raised; it is also recorded
                as ``state.error`` with status ``error``.
        """
        if not isinstance(call, ToolCall):
            try:
                call = ToolCall.model_validate(call)
            except ValidationError as e:
                raise InvalidInputError("Tool call must have name and id") from e
        if not call.name or not call.id:
            raise InvalidInputError("Tool call must have name and id")
        tool_def = self._tools.get(call.name)
        if tool_def is None:
            raise ToolNotFoundError(call.name)

        token = CancellationToken()
        self._token = token
        context = ToolContext(cancellation=token, memory=self.memory, logger=logger)
        logger.info(f"Calling {call.name} with {call.args}")
        try:
            async with tool_span(call.name, call.id) as span:
                try:
                    result = await self._run_leg(
                        tool_def.run(dict(call.args), context), token
                    )
                except Exception as e:
                    record_error(span, e)
                    raise
        except asyncio.CancelledError:
            self._on_cancelled(token)
            if not token.cancelled:
                raise
            return None
        except Exception as e:
            if token.cancelled:
                self._on_cancelled(token)
                return None
            logger.error(f"Tool {call.name} raised: {e}")
            self._fail(e)
            raise
        finally:
            self._release(token)
        if token.cancelled:
            return None

        result_message = Message(
            role=MessageRole.TOOL,
            content=[ToolResultPart(name=call.name, result=result, for_id=call.id)],
        )
        changes = {"messages": [*self._state.messages, result_message]}
        # A parallel call's continuation may already be streaming.
        if self._state.status is not SessionStatus.STREAMING:
            changes.update(status=SessionStatus.IDLE, current_tool_call=None)
        self._update(**changes)
        await self._continue()
        return result

    async def _continue(self) -> None:
        messages = self._state.messages
        if not messages:
            return
        first_meta = messages[0].meta or {}
        await self.send(
            self.config.continuation_prompt,
            model=first_meta.get("model"),
            meta={"continuation": True},
        )

    def register_tool(self, tool_def: Tool) -> None:
        self._tools.register(tool_def)

    def unregister_tool(self, name: str) -> None:
        self._tools.unregister(name)

    def get_tools(self) -> list[Tool]:
        return self._tools.snapshot()

    def get_tool(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def is_tool_registered(self, name: str) -> bool:
        return name in self._tools

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """Cancel the active leg and return to ``idle``.

        Messages and any recorded error are kept.
        """
        token, self._token = self._token, None
        if token is not None:
            token.cancel()
        self._update(status=SessionStatus.IDLE, current_tool_call=None)

    def reset(self) -> None:
        """Stop, then wipe messages and error. The session id is kept."""
        token, self._token = self._token, None
        if token is not None:
            token.cancel()
        self._update(
            messages=[],
            status=SessionStatus.IDLE,
            error=None,
            current_tool_call=None,
        )

    def clear_history(self) -> None:
        self.reset()

    def export_history(self) -> list[Message]:
        return list(self._state.messages)

    def import_history(self, msgs: list[Message | Mapping[str, Any]]) -> None:
        """Replace the log with *msgs*.

        Each entry needs an id, a role and a content list. Tool result
        pairing is not checked.
        """
        if not isinstance(msgs, (list, tuple)):
            raise HistoryFormatError("Messages must be a list")
        messages = []
        for entry in msgs:
            if isinstance(entry, Message):
                messages.append(entry)
                continue
            if (
                not isinstance(entry, Mapping)
                or not entry.get("id")
                or not entry.get("role")
                or not isinstance(entry.get("content"), (list, tuple))
            ):
                raise HistoryFormatError("Invalid message format")
            try:
                messages.append(Message.model_validate(entry))
            except ValidationError as e:
                raise HistoryFormatError("Invalid message format") from e
        self._update(messages=messages)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(
        self, listener: Callable[[SessionState], None]
    ) -> Callable[[], None]:
        """Deliver the current state now and coalesced updates after.

        Returns:
            A function that removes the listener.
        """
        return self._publisher.subscribe(listener, self._state)

    def flush(self) -> None:
        """Deliver any pending coalesced update immediately."""
        self._publisher.flush()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def save_to_memory(self) -> None:
        if self.memory is None:
            return
        try:
            await self.memory.set(self.session_id, self._state.model_dump())
        except Exception as e:
            logger.error(f"Failed to save to memory: {e}")
            raise

    async def load_from_memory(self) -> None:
        """Replace the state with the stored snapshot, if there is one.

        A stored ``streaming`` status comes back as ``idle``; the stream
        it described did not survive.
        """
        if self.memory is None:
            return
        try:
            saved = await self.memory.get(self.session_id)
        except Exception as e:
            logger.error(f"Failed to load from memory: {e}")
            raise
        if not isinstance(saved, Mapping):
            return
        merged = {**self._state.model_dump(), **saved, "session_id": self.session_id}
        try:
            restored = SessionState.model_validate(merged)
        except ValidationError as e:
            raise HistoryFormatError("Stored session state is malformed") from e
        status = restored.status
        if status is SessionStatus.STREAMING:
            status = SessionStatus.IDLE
        self._update(
            messages=restored.messages,
            status=status,
            current_tool_call=restored.current_tool_call,
            error=restored.error,
        )

    async def _save(self, state: SessionState) -> None:
        async with self._save_lock:
            try:
                await self.memory.set(state.session_id, state.model_dump())
            except Exception as e:
                logger.error(f"Failed to save state to memory: {e}")

    def _schedule_save(self) -> None:
        if self.memory is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, state not saved")
            return
        task = loop.create_task(self._save(self._state))
        self._saves.add(task)
        task.add_done_callback(self._saves.discard)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_leg(self, coro, token: CancellationToken):
        task = asyncio.ensure_future(coro)
        token.attach(task)
        return await task

    def _update(self, **changes) -> None:
        if "messages" in changes:
            # Snapshots share the log; it must not be mutable through them.
            changes["messages"] = tuple(changes["messages"])
        self._state = self._state.model_copy(update=changes)
        if self._state.status is SessionStatus.STREAMING:
            interval = self.config.streaming_publish_interval
        else:
            interval = self.config.idle_publish_interval
        self._publisher.publish(self._state, interval)
        self._schedule_save()

    def _fail(self, exc: BaseException) -> None:
        self._update(
            status=SessionStatus.ERROR,
            error=_error_message(exc),
            current_tool_call=None,
        )

    def _on_cancelled(self, token: CancellationToken) -> None:
        logger.info("Operation cancelled")
        # stop()/reset() already settled the state and released the token.
        if self._token is token:
            self._update(status=SessionStatus.IDLE, current_tool_call=None)

    def _release(self, token: CancellationToken) -> None:
        if self._token is token:
            self._token = None
