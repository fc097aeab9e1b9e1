"""
Pydantic models for request/response validation and OpenAPI documentation.

This module defines the data transfer objects (DTOs) of the HTTP API:
- Request models with validation
- Response models for consistent API outputs
- Conversions to and from the gateway's canonical types

Usage:
    from notebridge.models import ChatRequestBody, SearchRequest, ErrorResponse
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from notebridge.providers import CanonicalMessage, ChatRequest, ModelInfo, ToolCall


# =============================================================================
# Enums
# =============================================================================

class MessageRole(str, Enum):
    """Valid roles for chat messages."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ServiceStatus(str, Enum):
    """Status values for health checks."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


# =============================================================================
# Chat Models
# =============================================================================

class ToolCallModel(BaseModel):
    """A tool invocation requested by the model."""

    id: str
    function_name: str
    arguments_json: str = "{}"

    @classmethod
    def from_tool_call(cls, call: ToolCall) -> "ToolCallModel":
        return cls(id=call.id, function_name=call.function_name, arguments_json=call.arguments_json)

    def to_tool_call(self) -> ToolCall:
        return ToolCall(id=self.id, function_name=self.function_name, arguments_json=self.arguments_json)


class ChatMessageModel(BaseModel):
    """
    Represents a single message of a conversation.

    Attributes:
        role: system, user, assistant or tool
        content: Message text (may be null for pure tool-call turns)
        images: Data URIs attached to a user turn
        tool_calls: Calls requested by an assistant turn
        tool_call_id: Call answered by a tool turn

    Example:
        >>> msg = ChatMessageModel(role="user", content="Hello, world!")
    """

    role: MessageRole = Field(..., description="Message sender role", examples=["user"])
    content: str | None = Field(default=None, description="Message text")
    images: list[str] = Field(default_factory=list, description="Image data URIs")
    tool_calls: list[ToolCallModel] = Field(default_factory=list)
    tool_call_id: str | None = None

    @model_validator(mode="after")
    def validate_shape(self) -> "ChatMessageModel":
        """Content is required except on assistant tool-call turns; tool turns need a call id."""
        if self.content is None and not (self.role is MessageRole.ASSISTANT and self.tool_calls):
            raise ValueError("content may only be null on assistant messages carrying tool_calls")
        if self.role is MessageRole.TOOL and not self.tool_call_id:
            raise ValueError("tool messages require tool_call_id")
        return self

    def to_canonical(self) -> CanonicalMessage:
        return CanonicalMessage(
            role=self.role.value,
            content=self.content,
            images=list(self.images),
            tool_calls=[call.to_tool_call() for call in self.tool_calls],
            tool_call_id=self.tool_call_id,
        )


class ChatRequestBody(BaseModel):
    """
    Incoming chat request payload.

    Attributes:
        messages: Conversation, oldest first
        model: Scoped model id (`provider:model`); empty for the default
        scope: Folder that retrieval and chat memory are restricted to
        conversation_id: Enables chat memory when given with a scope

    Example:
        >>> body = ChatRequestBody(
        ...     messages=[ChatMessageModel(role="user", content="What did I note about tides?")],
        ...     model="local:llama3:8b",
        ...     scope="Ocean",
        ... )
    """

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "messages": [{"role": "user", "content": "Summarize my meeting notes"}],
                    "model": "openai:gpt-4o",
                    "scope": "Work/Meetings",
                }
            ]
        }
    )

    messages: list[ChatMessageModel] = Field(..., min_length=1, description="Conversation messages")
    model: str = Field(default="", description="Scoped model id")
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    tools: list[dict[str, Any]] | None = Field(default=None, description="Function tools (OpenAI shape)")
    tool_choice: Any = None
    scope: str | None = Field(default=None, description="Folder prefix for retrieval and memory")
    conversation_id: str | None = Field(default=None, max_length=200)
    use_context: bool = Field(default=True, description="Retrieve note context for the last question")

    @field_validator("conversation_id")
    @classmethod
    def validate_conversation_id(cls, v: str | None) -> str | None:
        if v is not None and ("/" in v or "\\" in v or v.strip() in {"", ".", ".."}):
            raise ValueError("conversation_id must be a plain name")
        return v

    def to_chat_request(self) -> ChatRequest:
        return ChatRequest(
            messages=[m.to_canonical() for m in self.messages],
            model_id=self.model,
            temperature=self.temperature,
            tools=self.tools,
            tool_choice=self.tool_choice,
        )


class SourceModel(BaseModel):
    """A note chunk that was given to the model as context."""

    model_config = ConfigDict(frozen=True)

    path: str
    score: float


class ChatCompletionResponse(BaseModel):
    """One-shot chat result."""

    content: str | None
    tool_calls: list[ToolCallModel] = Field(default_factory=list)
    sources: list[SourceModel] = Field(default_factory=list)


# =============================================================================
# Model Management
# =============================================================================

class CapabilitiesModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    vision: bool = False
    tools: bool = False
    reasoning: bool = False


class ModelInfoModel(BaseModel):
    """A model offered by one of the configured backends."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Scoped id, e.g. 'openai:gpt-4o'")
    name: str
    provider_id: str
    capabilities: CapabilitiesModel = Field(default_factory=CapabilitiesModel)
    context_window: int | None = None

    @classmethod
    def from_info(cls, info: ModelInfo) -> "ModelInfoModel":
        return cls(
            id=info.id,
            name=info.name,
            provider_id=info.provider_id,
            capabilities=CapabilitiesModel(
                vision=info.capabilities.vision,
                tools=info.capabilities.tools,
                reasoning=info.capabilities.reasoning,
            ),
            context_window=info.context_window,
        )


class ModelsResponse(BaseModel):
    models: list[ModelInfoModel]
    active_local_model: str | None = None


class ModelActionRequest(BaseModel):
    """Preload or unload request; `model` defaults to the chat model / active model."""

    model: str | None = Field(default=None, examples=["local:llama3:8b"])


class BestEffortResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: bool
    detail: str = ""


class RunningModelsResponse(BaseModel):
    models: list[str]
    active_local_model: str | None = None


# =============================================================================
# Embedding, Search and Indexing
# =============================================================================

class EmbedRequest(BaseModel):
    text: str = Field(..., min_length=1)


class EmbedResponse(BaseModel):
    vector: list[float]
    dimensions: int


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    k: int = Field(default=5, ge=1, le=100)
    path_prefix: str | None = None


class SearchHitModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    source_path: str
    text: str
    score: float


class SearchResponse(BaseModel):
    hits: list[SearchHitModel]


class DocumentModel(BaseModel):
    """A note to index; `modified_at` is the note's modification stamp."""

    path: str = Field(..., min_length=1)
    text: str
    modified_at: float


class IndexDocumentsRequest(BaseModel):
    documents: list[DocumentModel] = Field(default_factory=list)


class IndexResponse(BaseModel):
    updated: int = Field(..., description="Documents re-indexed")
    total: int = Field(..., description="Documents received")
    chunks: int = Field(..., description="Chunks in the index after the pass")


class DeleteDocumentsRequest(BaseModel):
    paths: list[str] = Field(..., min_length=1)


class DeleteDocumentsResponse(BaseModel):
    removed: int = Field(..., description="Chunks removed")


class IndexedChunkModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str


class IndexedDocumentResponse(BaseModel):
    path: str
    modified_at: float | None = Field(None, description="Stamp of the indexed generation, null if never indexed")
    chunks: list[IndexedChunkModel]


# =============================================================================
# Health and Errors
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response with service statuses."""

    status: ServiceStatus = Field(..., examples=["healthy", "degraded", "unhealthy"])
    services: dict[str, Any]
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    version: str = "1.0.0"


class ReadinessResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    ready: bool
    checks: dict[str, bool] = Field(default_factory=dict)


class PingResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "ok"


class ErrorResponse(BaseModel):
    """
    Standard error response format.

    All API errors return this format for consistency.
    """

    model_config = ConfigDict(frozen=True)

    error: str = Field(..., examples=["TRANSPORT_ERROR"])
    message: str
    details: str | None = None
    upstream_status: int | None = None
    timestamp: datetime = Field(default_factory=datetime.now)
