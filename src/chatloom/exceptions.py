"""Chatloom exception hierarchy.

All chatloom-specific exceptions inherit from ChatloomError. Errors
raised by a provider stream or a tool executor are never wrapped; they
propagate unchanged after being recorded on the session state.
"""


class ChatloomError(Exception):
    """Base exception for all chatloom errors."""


class InvalidInputError(ChatloomError):
    """Raised when send() receives empty input or run_tool() a malformed call."""


class SessionBusyError(ChatloomError):
    """Raised when a generation is requested while another is streaming."""

    def __init__(self) -> None:
        super().__init__("Another message is already being processed")


class ToolValidationError(ChatloomError):
    """Raised when a tool definition lacks a name or an executor."""


class ToolNotFoundError(ChatloomError):
    """Raised when a tool name lookup fails."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool {name} not found")


class HistoryFormatError(ChatloomError):
    """Raised when imported history is structurally malformed.

    Named HistoryFormatError (not ValidationError) to avoid
    collision with pydantic.ValidationError.
    """


class ProviderConfigError(ChatloomError):
    """Raised when a provider configuration fails validation."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(f"Invalid configuration: {', '.join(errors)}")
