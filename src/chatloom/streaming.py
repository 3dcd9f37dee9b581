"""Streaming primitives for provider responses.

Providers yield :class:`Fragment` objects: :class:`TextFragment`,
:class:`ToolUseFragment` and :class:`DoneFragment`.  A
``ToolUseFragment`` always carries the complete JSON-encoded
arguments of one call.  Providers whose wire protocol splits
arguments across chunks reassemble them with
:class:`ToolCallAccumulator` before yielding.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass
class TextFragment:
    """A chunk of assistant text."""

    chunk: str


@dataclass
class ToolUseFragment:
    """A complete tool invocation."""

    name: str
    args_delta: str
    id: str


@dataclass
class DoneFragment:
    """End of the response."""

    finish_reason: str | None = None


Fragment = Union[TextFragment, ToolUseFragment, DoneFragment]


@dataclass
class ToolCallDelta:
    """A piece of a tool call from one wire-level chunk."""

    index: int
    call_id: str | None = None
    name: str | None = None
    arguments_delta: str | None = None


@dataclass
class _PendingCall:
    id: str = ""
    name: str = ""
    arguments: str = ""


class ToolCallAccumulator:
    """Assembles complete tool calls from streamed deltas."""

    def __init__(self) -> None:
        self._pending: dict[int, _PendingCall] = {}

    def feed(self, delta: ToolCallDelta) -> None:
        if delta.index not in self._pending:
            self._pending[delta.index] = _PendingCall()
        call = self._pending[delta.index]
        if delta.call_id is not None:
            call.id = delta.call_id
        if delta.name is not None:
            call.name = delta.name
        if delta.arguments_delta is not None:
            call.arguments += delta.arguments_delta

    def finalize(self) -> list[ToolUseFragment]:
        """Return completed tool calls in index order."""
        return [
            ToolUseFragment(
                name=call.name,
                args_delta=call.arguments or "{}",
                id=call.id,
            )
            for _, call in sorted(self._pending.items())
        ]
