"""
Document indexing pipeline.

Splits documents into paragraph-aggregated chunks, embeds each chunk
through the gateway and writes the result to the vector store as one
generation per document. Unchanged documents (same modification stamp)
are skipped.

Usage:
    indexer = DocumentIndexer(store, gateway)
    await indexer.sync_all(documents)
"""
from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol, Sequence, runtime_checkable

from notebridge.config import get_logger, settings
from notebridge.exceptions import ConfigurationError, NotebridgeException
from notebridge.vector_store import DocumentChunk, VectorStore

logger = get_logger("indexer")

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")

ProgressCallback = Callable[[int, int], None]


@runtime_checkable
class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]: ...


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class SourceDocument:
    """A document to index: path, full text and modification stamp."""
    path: str
    text: str
    modified_at: float


@dataclass(frozen=True)
class IndexingConfig:
    """Configuration for chunking and embedding pacing."""
    chunk_max_length: int = field(default_factory=lambda: settings.CHUNK_MAX_LENGTH)
    chunk_delay_seconds: float = field(default_factory=lambda: settings.INDEX_CHUNK_DELAY_SECONDS)
    enable_background_indexing: bool = field(default_factory=lambda: settings.ENABLE_BACKGROUND_INDEXING)


# =============================================================================
# Chunking
# =============================================================================

def chunk_text(text: str, max_length: int = 1000) -> list[str]:
    """
    Aggregate blank-line separated paragraphs into chunks of at most
    `max_length` characters.

    A paragraph that does not fit closes the current chunk and starts the
    next one. A single paragraph longer than `max_length` becomes its own
    chunk unsplit. Empty paragraphs are dropped and no chunk is empty.

    Examples:
        >>> chunk_text("a\\n\\nb", max_length=10)
        ['a\\n\\nb']
        >>> chunk_text("aaaa\\n\\nbbbb", max_length=5)
        ['aaaa', 'bbbb']
    """
    paragraphs = [p.strip() for p in _PARAGRAPH_BREAK.split(text)]

    chunks: list[str] = []
    current = ""
    for paragraph in paragraphs:
        if not paragraph:
            continue
        if current and len(current) + 2 + len(paragraph) > max_length:
            chunks.append(current)
            current = paragraph
        else:
            current = f"{current}\n\n{paragraph}" if current else paragraph
    if current:
        chunks.append(current)
    return chunks


# =============================================================================
# Indexer
# =============================================================================

class DocumentIndexer:
    """
    Keeps the vector store in sync with a set of documents.

    Example:
        >>> indexer = DocumentIndexer(store, gateway)
        >>> await indexer.index_document(SourceDocument("notes/a.md", text, mtime))
        3
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        config: IndexingConfig | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._config = config or IndexingConfig()
        self._indexing = False

    @property
    def is_indexing(self) -> bool:
        return self._indexing

    def needs_indexing(self, doc: SourceDocument) -> bool:
        return self._store.get_modified_at(doc.path) != doc.modified_at

    # =========================================================================
    # Single Documents
    # =========================================================================

    async def index_document(self, doc: SourceDocument) -> int:
        """
        Index one document unless its stamp is unchanged.

        Returns:
            Number of chunks written (0 when skipped)
        """
        if not self.needs_indexing(doc):
            logger.debug("Skipping unchanged document: %s", doc.path)
            return 0
        written, _ = await self._index(doc.path, doc.text, doc.modified_at)
        return written

    async def index_text(self, text: str, virtual_path: str) -> int:
        """Index raw text under a virtual path (chat memory), then save."""
        written, changed = await self._index(virtual_path, text, time.time())
        if changed:
            await self._store.save()
        return written

    async def delete_document(self, path: str) -> int:
        removed = self._store.delete_by_source(path)
        await self._store.save()
        return removed

    async def _index(self, path: str, text: str, modified_at: float) -> tuple[int, bool]:
        """Returns the number of chunks written and whether the store changed."""
        pieces = chunk_text(text, self._config.chunk_max_length)
        if not pieces:
            removed = self._store.delete_by_source(path)
            if removed:
                logger.info("Document %s has no content, removed from index", path)
            return 0, bool(removed)

        chunks: list[DocumentChunk] = []
        for ordinal, piece in enumerate(pieces):
            if ordinal and self._config.chunk_delay_seconds:
                await asyncio.sleep(self._config.chunk_delay_seconds)
            try:
                vector = await self._embedder.embed(piece)
            except ConfigurationError:
                raise
            except NotebridgeException as e:
                logger.warning("Failed to embed chunk %d of %s: %s", ordinal, path, e.message)
                continue

            chunks.append(
                DocumentChunk(
                    id=DocumentChunk.make_id(path, ordinal),
                    text=piece,
                    vector=vector,
                    source_path=path,
                    modified_at=modified_at,
                )
            )

        if not chunks:
            logger.warning("No chunk of %s could be embedded, keeping previous index", path)
            return 0, False

        self._store.upsert(chunks)
        logger.info("Indexed %s (%d/%d chunks)", path, len(chunks), len(pieces))
        return len(chunks), True

    # =========================================================================
    # Batches
    # =========================================================================

    async def index_all(
        self,
        documents: Sequence[SourceDocument],
        on_progress: ProgressCallback | None = None,
    ) -> int:
        """
        Index every changed document, reporting progress, then save once
        if the store changed.

        Returns:
            Number of documents whose indexed chunks changed (0 if a pass
            is already running)
        """
        if self._indexing:
            logger.info("Indexing already in progress, ignoring request")
            return 0

        self._indexing = True
        try:
            total = len(documents)
            updated = 0
            for processed, doc in enumerate(documents, start=1):
                if self.needs_indexing(doc):
                    _, changed = await self._index(doc.path, doc.text, doc.modified_at)
                    if changed:
                        updated += 1
                if on_progress is not None:
                    on_progress(processed, total)
            if updated:
                await self._store.save()
        finally:
            self._indexing = False

        logger.info("Indexing complete: %d of %d documents updated", updated, len(documents))
        return updated

    async def sync_all(self, documents: Sequence[SourceDocument]) -> int:
        """
        Re-index only documents whose stamp changed; save if anything did.

        Disabled entirely when background indexing is switched off.
        """
        if not self._config.enable_background_indexing:
            logger.debug("Background indexing disabled, skipping sync")
            return 0
        if self._indexing:
            logger.info("Indexing already in progress, skipping sync")
            return 0

        self._indexing = True
        try:
            updated = 0
            for doc in documents:
                if self.needs_indexing(doc):
                    _, changed = await self._index(doc.path, doc.text, doc.modified_at)
                    if changed:
                        updated += 1
            if updated:
                await self._store.save()
        finally:
            self._indexing = False

        if updated:
            logger.info("Sync: updated %d documents", updated)
        else:
            logger.info("Sync: index is up to date")
        return updated
