from __future__ import annotations


class AIError(RuntimeError):
    """Base class for errors raised by the AI orchestration layer."""


class ConfigurationError(AIError):
    """No provider is configured, or model discovery did not finish in time."""


class NoModelsAvailableError(AIError):
    """Raised by the router when the discovered catalog is empty."""

    def __init__(self, task: str | None = None):
        self.task = task
        message = "No AI models available. Add provider API keys to the configuration."
        super().__init__(message)


class ProviderError(AIError):
    """A provider call or stream failed. Not retried by the agent loop."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class ConversationBusyError(AIError):
    """Another agent loop is already running against this conversation id."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation '{conversation_id}' already has a request in progress")


class ConversationNotFoundError(AIError):
    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation '{conversation_id}' not found")


__all__ = [
    "AIError",
    "ConfigurationError",
    "ConversationBusyError",
    "ConversationNotFoundError",
    "NoModelsAvailableError",
    "ProviderError",
]
