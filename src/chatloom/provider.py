import json
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from openai import AsyncOpenAI
from pydantic import BaseModel

from chatloom.cancellation import CancellationToken
from chatloom.message import (
    FilePart,
    Message,
    MessageRole,
    TextPart,
    ToolResultPart,
    ToolUsePart,
)
from chatloom.streaming import (
    DoneFragment,
    Fragment,
    TextFragment,
    ToolCallAccumulator,
    ToolCallDelta,
)
from chatloom.tools import Tool

logger = logging.getLogger(__name__)

ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1/"
MISTRAL_BASE_URL = "https://api.mistral.ai/v1"
GROK_BASE_URL = "https://api.x.ai/v1"
LOCAL_BASE_URL = "http://localhost:11434/v1"


class ChatRequest(BaseModel):
    """Everything a provider needs for one generation leg."""

    model: str = ""
    messages: list[Message]
    tools: list[Tool] | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    system_prompt: str | None = None


class ModelInfo(BaseModel):
    id: str
    name: str
    provider: str
    context_length: int | None = None
    supports_tools: bool | None = None


class ModelProvider(ABC):
    """Backend boundary consumed by a chat session.

    ``chat()`` returns a lazy, finite, non-restartable async iterator of
    fragments. Implementations should stop early once *cancellation*
    is cancelled; the session also cancels the consuming task.
    """

    @abstractmethod
    def chat(
            self,
            request: ChatRequest,
            cancellation: CancellationToken | None = None,
    ) -> AsyncIterator[Fragment]:
        ...

    async def models(self) -> list[ModelInfo]:
        """List models served by this backend.

        Backends that cannot list models return an empty list.
        """
        return []


def _stringify(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


def to_openai_messages(request: ChatRequest) -> list[dict]:
    """Convert the request history to chat-completions messages.

    The system prompt is injected at call time and never stored in the
    session log.
    """
    converted = []
    if request.system_prompt:
        converted.append(
            {"role": "system", "content": request.system_prompt}
        )
    for message in request.messages:
        text = []
        tool_calls = []
        for part in message.content:
            if isinstance(part, TextPart):
                text.append(part.text)
            elif isinstance(part, ToolUsePart):
                tool_calls.append({
                    "id": part.id,
                    "type": "function",
                    "function": {
                        "name": part.name,
                        "arguments": json.dumps(part.args),
                    },
                })
            elif isinstance(part, ToolResultPart):
                converted.append({
                    "role": "tool",
                    "tool_call_id": part.for_id,
                    "content": _stringify(part.result),
                })
            elif isinstance(part, FilePart):
                text.append(f"[File: {part.name or part.url}]")
        if message.role is MessageRole.TOOL:
            continue
        entry = {"role": message.role.value, "content": "".join(text)}
        if tool_calls:
            entry["tool_calls"] = tool_calls
        converted.append(entry)
    return converted


class OpenAICompatibleProvider(ModelProvider):
    """Streams chat completions from any OpenAI-compatible endpoint.

    Tool-call arguments arrive split across chunks; they are reassembled
    per call index and emitted as one ``ToolUseFragment`` per call once
    the wire stream ends, followed by a ``DoneFragment``.

    Args:
        api_key: API key. Read from *api_key_env* when omitted.
        base_url: Endpoint root, e.g. ``http://localhost:11434/v1``.
        default_model: Used when a request names no model.
        name: Provider name reported in :class:`ModelInfo`.
        api_key_env: Environment variable holding the key.
    """

    def __init__(
            self,
            api_key: str | None = None,
            base_url: str | None = None,
            default_model: str = "",
            name: str = "openai",
            api_key_env: str = "OPENAI_API_KEY",
            max_retries: int = 5,
            timeout: float = 600.0,
    ):
        if not api_key:
            api_key = os.getenv(api_key_env)
        self.name = name
        self.default_model = default_model
        self.base_url = base_url
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            max_retries=max_retries,
            timeout=timeout,
        )

    def _request_kwargs(self, request: ChatRequest) -> dict:
        kwargs = {
            "model": request.model or self.default_model,
            "messages": to_openai_messages(request),
            "stream": True,
        }
        if request.tools:
            kwargs["tools"] = [t.model_dump() for t in request.tools]
            kwargs["tool_choice"] = "auto"
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.max_tokens is not None:
            kwargs["max_tokens"] = request.max_tokens
        return kwargs

    async def chat(
            self,
            request: ChatRequest,
            cancellation: CancellationToken | None = None,
    ) -> AsyncIterator[Fragment]:
        stream = await self.client.chat.completions.create(
            **self._request_kwargs(request)
        )
        acc = ToolCallAccumulator()
        finish_reason = None
        try:
            async for chunk in stream:
                if cancellation is not None and cancellation.cancelled:
                    return
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if delta.content:
                    yield TextFragment(chunk=delta.content)
                for tc in delta.tool_calls or []:
                    fn = tc.function
                    acc.feed(ToolCallDelta(
                        index=tc.index,
                        call_id=tc.id,
                        name=fn.name if fn else None,
                        arguments_delta=fn.arguments if fn else None,
                    ))
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        finally:
            await stream.close()

        for fragment in acc.finalize():
            yield fragment
        yield DoneFragment(finish_reason=finish_reason)

    async def models(self) -> list[ModelInfo]:
        return [
            ModelInfo(id=m.id, name=m.id, provider=self.name)
            async for m in self.client.models.list()
        ]


def create_openai_provider(
        api_key: str | None = None,
        base_url: str | None = None,
        default_model: str = "",
) -> OpenAICompatibleProvider:
    return OpenAICompatibleProvider(
        api_key=api_key,
        base_url=base_url,
        default_model=default_model,
    )


def create_anthropic_provider(
        api_key: str | None = None,
        base_url: str | None = None,
        default_model: str = "",
) -> OpenAICompatibleProvider:
    return OpenAICompatibleProvider(
        api_key=api_key,
        base_url=base_url or ANTHROPIC_BASE_URL,
        default_model=default_model,
        name="anthropic",
        api_key_env="ANTHROPIC_API_KEY",
    )


def create_mistral_provider(
        api_key: str | None = None,
        base_url: str | None = None,
        default_model: str = "",
) -> OpenAICompatibleProvider:
    return OpenAICompatibleProvider(
        api_key=api_key,
        base_url=base_url or MISTRAL_BASE_URL,
        default_model=default_model,
        name="mistral",
        api_key_env="MISTRAL_API_KEY",
    )


def create_grok_provider(
        api_key: str | None = None,
        base_url: str | None = None,
        default_model: str = "",
) -> OpenAICompatibleProvider:
    return OpenAICompatibleProvider(
        api_key=api_key,
        base_url=base_url or GROK_BASE_URL,
        default_model=default_model,
        name="grok",
        api_key_env="XAI_API_KEY",
    )


def create_local_provider(
        api_key: str | None = None,
        base_url: str | None = None,
        default_model: str = "",
) -> OpenAICompatibleProvider:
    # Local servers ignore the key but the client insists on one.
    return OpenAICompatibleProvider(
        api_key=api_key or "ollama",
        base_url=base_url or LOCAL_BASE_URL,
        default_model=default_model,
        name="local",
    )
