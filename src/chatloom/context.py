from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chatloom.cancellation import CancellationToken
    from chatloom.memory import MemoryAdapter


@dataclass
class ToolContext:
    """Runtime context handed to every tool executor.

    The session creates a ToolContext before each ``run_tool()`` call.
    Tools built with ``@tool`` receive it through a parameter named
    ``context``.

    Args:
        cancellation: Token of the active tool leg. Long-running tools
            should check ``cancellation.cancelled`` or await
            ``cancellation.wait()``.
        memory: The session's memory adapter, if one was configured.
        logger: Logger tools may use to report progress.
    """

    cancellation: CancellationToken | None = None
    memory: MemoryAdapter | None = None
    logger: logging.Logger | None = None
