"""
Chat service.

This module runs one chat turn end to end:
- Context retrieval for the latest user question
- Context injection into the system message
- Streaming or one-shot generation through the model gateway
- Error markers instead of broken streams
- Chat memory: the finished exchange is indexed as a note

Usage:
    from notebridge.services.chat import ChatService

    service = ChatService(gateway, retrieval, indexer)
    async for delta in service.stream_reply(request, scope="Projects"):
        print(delta, end="")
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace
from typing import AsyncIterator, Sequence

from notebridge.config import get_logger, settings
from notebridge.exceptions import NotebridgeException, RequestCancelledError
from notebridge.gateway import ModelGateway
from notebridge.indexer import DocumentIndexer
from notebridge.providers import CanonicalMessage, ChatRequest, ChatResult
from notebridge.services.rag import RetrievalHit, RetrievalService

logger = get_logger("services.chat")


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class ChatConfig:
    """Configuration for chat turns."""
    system_prompt: str = field(default_factory=lambda: settings.SYSTEM_PROMPT)
    stream_error_message: str = field(default_factory=lambda: settings.STREAM_ERROR_MESSAGE)
    memory_folder: str = ".memory"


@dataclass
class PreparedTurn:
    """Messages as sent to the model, plus the context they carry."""
    request: ChatRequest
    hits: list[RetrievalHit]
    question: str


# =============================================================================
# Helpers
# =============================================================================

def last_user_text(messages: Sequence[CanonicalMessage]) -> str:
    """Content of the most recent user message ('' if none)."""
    for message in reversed(messages):
        if message.role == "user":
            return message.content or ""
    return ""


def memory_note(question: str, answer: str) -> str:
    return f"Context(Chat Memory): \nUser: {question} \nAI: {answer}"


# =============================================================================
# Chat Service Class
# =============================================================================

class ChatService:
    """
    Service for retrieval-augmented chat turns.

    Example:
        >>> service = ChatService(gateway, retrieval, indexer)
        >>> result = await service.complete_reply(ChatRequest(messages))
    """

    def __init__(
        self,
        gateway: ModelGateway,
        retrieval: RetrievalService,
        indexer: DocumentIndexer | None = None,
        config: ChatConfig | None = None,
    ) -> None:
        self._gateway = gateway
        self._retrieval = retrieval
        self._indexer = indexer
        self._config = config or ChatConfig()
        self._background: set[asyncio.Task] = set()

    async def prepare(
        self,
        request: ChatRequest,
        scope: str | None = None,
        use_context: bool = True,
    ) -> PreparedTurn:
        """
        Retrieve context for the latest user message and inject it.

        Args:
            request: Incoming chat request
            scope: Folder the retrieval is restricted to
            use_context: Skip retrieval entirely when False
        """
        question = last_user_text(request.messages)
        hits = await self._retrieval.get_context(question, path_prefix=scope) if use_context else []
        messages = RetrievalService.inject_context(
            request.messages,
            RetrievalService.build_context_block(hits),
            self._config.system_prompt,
        )
        return PreparedTurn(request=replace(request, messages=messages), hits=hits, question=question)

    async def complete_reply(
        self,
        request: ChatRequest,
        scope: str | None = None,
        use_context: bool = True,
    ) -> tuple[ChatResult, list[RetrievalHit]]:
        """
        One-shot chat turn. Errors propagate to the caller.

        Returns:
            Model result and the context hits it was given
        """
        turn = await self.prepare(request, scope, use_context)
        result = await self._gateway.complete(turn.request)
        return result, turn.hits

    async def stream_reply(
        self,
        request: ChatRequest,
        scope: str | None = None,
        conversation_id: str | None = None,
        use_context: bool = True,
    ) -> AsyncIterator[str]:
        """
        Streaming chat turn.

        Yields:
            Text deltas from the model

        Note:
            On error, yields an error marker instead of raising so the
            response always completes. A cancelled turn ends silently and
            is not remembered.
        """
        turn = await self.prepare(request, scope, use_context)

        parts: list[str] = []
        failed = False
        try:
            async for delta in self._gateway.stream(turn.request):
                parts.append(delta)
                yield delta

        except RequestCancelledError:
            logger.info("Chat stream cancelled after %d fragments", len(parts))
            return

        except NotebridgeException as e:
            failed = True
            logger.error("Model error during stream: %s (details: %s)", e.message, e.details)
            if parts:
                logger.warning("Stream interrupted after content was sent")
                yield self._config.stream_error_message
            else:
                yield f"[Error: {e.message}. Please try again.]"

        except Exception as e:
            failed = True
            logger.exception("Unexpected stream generation error: %s", e)
            yield self._config.stream_error_message

        answer = "".join(parts)
        if not failed and answer and scope and conversation_id:
            self._spawn(self.remember_exchange(scope, conversation_id, turn.question, answer))

    # =========================================================================
    # Chat Memory
    # =========================================================================

    def memory_path(self, scope: str, conversation_id: str) -> str:
        stamp = int(time.time() * 1000)
        return f"{scope.rstrip('/')}/{self._config.memory_folder}/{conversation_id}/{stamp}.md"

    async def remember_exchange(self, scope: str, conversation_id: str, question: str, answer: str) -> int:
        """
        Index a finished exchange so later turns can retrieve it.

        Returns:
            Number of chunks indexed (0 when memory is unavailable or failed)
        """
        if self._indexer is None:
            return 0

        path = self.memory_path(scope, conversation_id)
        try:
            count = await self._indexer.index_text(memory_note(question, answer), path)
        except NotebridgeException as e:
            logger.warning("Failed to store chat memory %s: %s", path, e.message)
            return 0

        logger.debug("Chat memory stored at %s (%d chunks)", path, count)
        return count

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def wait_background(self) -> None:
        """Wait for pending chat-memory writes (used on shutdown and in tests)."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
