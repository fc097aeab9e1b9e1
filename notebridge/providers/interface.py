"""
Abstract interface and canonical data model for model providers.

Every backend (local server, OpenAI-compatible hosts, Anthropic, Gemini)
is driven through the same ModelProvider contract so the gateway can route
between them by provider id.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Literal

from notebridge.cancellation import CancellationToken

Role = Literal["system", "user", "assistant", "tool"]


# =============================================================================
# Canonical Data Model
# =============================================================================

@dataclass(frozen=True)
class ProviderIdentity:
    """Connection settings of one backend. Replaced, never mutated."""
    id: str
    display_name: str
    base_url: str
    api_key: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))


@dataclass(frozen=True)
class ToolCall:
    """A model's request to invoke a named tool."""
    id: str
    function_name: str
    arguments_json: str


@dataclass
class CanonicalMessage:
    """Provider-neutral chat message."""
    role: Role
    content: str | None = None
    images: list[str] = field(default_factory=list)  # data URIs
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None


@dataclass
class ChatRequest:
    """One chat turn sent through the gateway."""
    messages: list[CanonicalMessage]
    model_id: str = ""
    temperature: float | None = None
    tools: list[dict[str, Any]] | None = None  # OpenAI function-tool shape
    tool_choice: Any = None
    cancel_token: CancellationToken | None = None


@dataclass
class ChatResult:
    """Result of a non-streaming completion."""
    content: str | None
    tool_calls: list[ToolCall] = field(default_factory=list)


@dataclass(frozen=True)
class ModelCapabilities:
    vision: bool = False
    tools: bool = False
    reasoning: bool = False


@dataclass(frozen=True)
class ModelInfo:
    """A model as advertised by a backend."""
    id: str
    name: str
    provider_id: str
    capabilities: ModelCapabilities = field(default_factory=ModelCapabilities)
    context_window: int | None = None


@dataclass(frozen=True)
class BestEffortResult:
    """Outcome of an operation whose failure never propagates."""
    ok: bool
    detail: str = ""


# =============================================================================
# Provider Interface
# =============================================================================

class ModelProvider(ABC):
    """
    Abstract interface for model backends.

    All implementations must provide:
    - Model listing
    - Non-streaming completion (with tool calls)
    - Streaming completion yielding text deltas
    """

    def __init__(self, identity: ProviderIdentity) -> None:
        self.identity = identity

    @property
    def id(self) -> str:
        return self.identity.id

    @property
    def name(self) -> str:
        return self.identity.display_name

    @abstractmethod
    async def list_models(self) -> list[ModelInfo]:
        """
        List the models this backend serves.

        Returns:
            ModelInfo entries with unscoped ids

        Raises:
            TransportError: When the backend cannot be reached
        """
        pass

    @abstractmethod
    async def complete(self, request: ChatRequest) -> ChatResult:
        """
        Generate a full completion.

        Args:
            request: Chat request; `model_id` is the bare model name

        Returns:
            ChatResult with content and/or tool calls

        Raises:
            ConfigurationError: Missing credentials
            TransportError: HTTP or network failure
            ProviderError: Backend reported an error
        """
        pass

    @abstractmethod
    def stream(self, request: ChatRequest) -> AsyncIterator[str]:
        """
        Generate a streaming completion.

        Yields:
            str: Text deltas in order

        Raises:
            ConfigurationError: Missing credentials
            TransportError: HTTP or network failure
            ProviderError: Error event in the stream
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id!r}, base_url={self.identity.base_url!r})"
