"""Key-value persistence for session state.

Sessions address their snapshot by ``session_id``. Saves triggered by
state mutations are fire-and-forget; the adapter only needs to be a
plain async key-value store.
"""

import copy
from abc import ABC, abstractmethod
from typing import Any


class MemoryAdapter(ABC):
    """Abstract async key-value store."""

    @abstractmethod
    async def get(self, key: str) -> Any:
        """Return the value stored under *key*, or ``None``."""

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store *value* under *key*, replacing any previous value."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove *key* if present."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove every key."""


class InMemoryStore(MemoryAdapter):
    """Dict-backed store (process lifetime only).

    Values are deep-copied on the way in and out so callers never
    share mutable structures with the store.
    """

    def __init__(self):
        self._data: dict[str, Any] = {}

    async def get(self, key: str) -> Any:
        return copy.deepcopy(self._data.get(key))

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data
