"""Configuration models for sessions and providers."""

from pydantic import BaseModel

# Coalescing windows for observer delivery, in seconds.
STREAMING_PUBLISH_INTERVAL = 0.1
IDLE_PUBLISH_INTERVAL = 0.01

DEFAULT_CONTINUATION_PROMPT = "Continue"


class SessionConfig(BaseModel):
    """Tunables for a :class:`~chatloom.session.ChatSession`.

    Args:
        streaming_publish_interval: Coalescing window while a response
            is streaming.
        idle_publish_interval: Coalescing window for every other status.
        continuation_prompt: Text of the user message sent after a tool
            result to let the model continue.
        default_model: Model used when neither ``send()`` nor the first
            message's metadata names one.
        system_prompt: Sent with every request that doesn't pass its own,
            including tool continuations.
    """

    streaming_publish_interval: float = STREAMING_PUBLISH_INTERVAL
    idle_publish_interval: float = IDLE_PUBLISH_INTERVAL
    continuation_prompt: str = DEFAULT_CONTINUATION_PROMPT
    default_model: str = ""
    system_prompt: str | None = None


class ProviderConfig(BaseModel):
    """Settings for building a provider adapter.

    Semantic checks (known provider, API key present, URL shape) live in
    :meth:`chatloom.registry.ProviderRegistry.validate_config`.
    """

    provider: str = ""
    model: str = ""
    api_key: str | None = None
    base_url: str | None = None
