"""
Retrieval service for vault context.

Embeds the user's question, queries the vector store and renders the hits
as a context block that is attached to the system message of a chat
request.

Key features:
- Optional folder scope (path prefix) per request
- Failures degrade to "no context", the chat still runs
- Context injection into an existing or new system message

Usage:
    from notebridge.services.rag import RetrievalService

    hits = await service.get_context("What did I write about tides?", "Ocean/")
    messages = RetrievalService.inject_context(
        messages, RetrievalService.build_context_block(hits), system_prompt
    )
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Sequence

from notebridge.config import get_logger, settings
from notebridge.exceptions import NotebridgeException, RequestCancelledError
from notebridge.indexer import Embedder
from notebridge.providers import CanonicalMessage
from notebridge.utils import sanitize_text
from notebridge.vector_store import VectorStore

logger = get_logger("services.rag")

CONTEXT_HEADER = "[CONTEXT FROM USER VAULT]"
CONTEXT_FOOTER = "[END CONTEXT]"
CONTEXT_PREAMBLE = (
    "The following information is retrieved from the user's notes. "
    "Use it to answer the question if relevant."
)


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True, slots=True)
class RetrievalHit:
    """
    Retrieved chunk with its cosine similarity score.

    Attributes:
        source_path: Note the chunk came from
        text: Chunk text
        score: Similarity score (-1.0 to 1.0, higher is better)
    """
    source_path: str
    text: str
    score: float

    def __repr__(self) -> str:
        text_preview = self.text[:50] + "..." if len(self.text) > 50 else self.text
        return f"RetrievalHit(score={self.score:.3f}, path={self.source_path!r}, text='{text_preview}')"


@dataclass(frozen=True)
class RetrievalConfig:
    """Configuration for context retrieval."""
    top_k: int = field(default_factory=lambda: settings.MAX_CONTEXT_CHUNKS)
    system_prompt: str = field(default_factory=lambda: settings.SYSTEM_PROMPT)


# =============================================================================
# Retrieval Service Class
# =============================================================================

class RetrievalService:
    """
    Service for retrieving note context for a chat question.

    Example:
        >>> service = RetrievalService(store, gateway)
        >>> hits = await service.get_context("How do I bake bread?")
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        config: RetrievalConfig | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._config = config or RetrievalConfig()

    @property
    def config(self) -> RetrievalConfig:
        return self._config

    async def get_context(
        self,
        query: str,
        path_prefix: str | None = None,
        top_k: int | None = None,
    ) -> list[RetrievalHit]:
        """
        Get the chunks most similar to `query`.

        Args:
            query: User question
            path_prefix: Restrict the search to notes under this folder
            top_k: Number of hits (default from config)

        Returns:
            Hits sorted by relevance; empty when nothing could be retrieved
        """
        query = sanitize_text(query)
        if not query:
            logger.debug("Skipping retrieval: empty query")
            return []
        if not len(self._store):
            logger.debug("Skipping retrieval: index is empty")
            return []

        try:
            embedding = await self._embedder.embed(query)
        except RequestCancelledError:
            raise
        except NotebridgeException as e:
            logger.error("Query embedding failed: %s", e.message)
            return []

        try:
            scored = self._store.query(embedding, k=top_k or self._config.top_k, path_prefix=path_prefix)
        except NotebridgeException as e:
            logger.error("Vector search failed: %s", e.message)
            return []

        hits = [RetrievalHit(s.chunk.source_path, s.chunk.text, s.score) for s in scored]
        if hits:
            logger.info("Retrieved %d chunks (top score: %.3f)", len(hits), hits[0].score)
        return hits

    # =========================================================================
    # Prompt Construction
    # =========================================================================

    @staticmethod
    def build_context_block(hits: Sequence[RetrievalHit]) -> str:
        """
        Render hits as `[File: path]` sections separated by blank lines.

        Examples:
            >>> RetrievalService.build_context_block([RetrievalHit("a.md", "Alpha", 0.9)])
            '[File: a.md]\\nAlpha '
        """
        return "\n\n".join(f"[File: {hit.source_path}]\n{hit.text} " for hit in hits)

    @staticmethod
    def inject_context(
        messages: Sequence[CanonicalMessage],
        context: str,
        system_prompt: str,
    ) -> list[CanonicalMessage]:
        """
        Attach the context block to the conversation.

        The block is appended to the first system message; without one, a
        system message carrying `system_prompt` and the block is prepended.
        Without context, `system_prompt` is still prepended when the
        conversation does not start with a system message.

        Returns:
            A new message list; the input is not modified
        """
        result = list(messages)
        first_is_system = bool(result) and result[0].role == "system"

        if not context:
            if not first_is_system:
                result.insert(0, CanonicalMessage(role="system", content=system_prompt))
            return result

        block = f"\n\n{CONTEXT_HEADER}\n{CONTEXT_PREAMBLE}\n\n{context}\n\n{CONTEXT_FOOTER}\n"
        for i, message in enumerate(result):
            if message.role == "system":
                result[i] = replace(message, content=(message.content or "") + block)
                return result

        result.insert(0, CanonicalMessage(role="system", content=system_prompt + block))
        return result
