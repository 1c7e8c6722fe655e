"""
Application errors for clean API error handling.

Use ServiceUnavailableError when a dependency (vector store, embeddings, LLM)
is misconfigured or unreachable so the API can return 503 with a user-facing message.
"""


class ServiceUnavailableError(Exception):
    """Raised when a required service (e.g. vector store, embeddings API) is unavailable or misconfigured."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class LLMUnavailableError(ServiceUnavailableError):
    """Raised when no LLM provider is configured or the provider keeps failing after retries."""


class ToolNotFoundError(KeyError):
    """Raised by the tool registry for a name that was never registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(name)

    def __str__(self) -> str:
        return f"Tool '{self.name}' is not registered"
