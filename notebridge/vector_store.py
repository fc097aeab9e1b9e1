"""
In-memory vector index with JSON persistence.

Holds every embedded chunk in a single list, replaces a document's chunks
as one generation on upsert, and answers exact cosine-similarity queries
with NumPy. The whole index is written as one JSON array on save.

Usage:
    store = VectorStore(settings.VECTOR_STORE_PATH)
    await store.load()
    store.upsert(chunks)
    hits = store.query(query_vector, k=3, path_prefix="Projects/")
    await store.save()
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

import aiofiles
import aiofiles.os
import numpy as np
from pydantic import BaseModel, ConfigDict, TypeAdapter, model_validator

from notebridge.config import get_logger, settings
from notebridge.exceptions import ValidationError, VectorStoreError
from notebridge.utils import is_usable_vector

logger = get_logger("vector_store")


# =============================================================================
# Data Model
# =============================================================================

class DocumentChunk(BaseModel):
    """
    One embedded span of a source document.

    Attributes:
        id: `{source_path}#{ordinal}`
        text: Chunk text
        vector: Embedding
        source_path: Document path (or virtual path for chat memory)
        modified_at: Source modification stamp at indexing time
    """

    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    vector: list[float]
    source_path: str
    modified_at: float | None = None

    @staticmethod
    def make_id(source_path: str, ordinal: int) -> str:
        return f"{source_path}#{ordinal}"

    @model_validator(mode="before")
    @classmethod
    def lift_legacy_metadata(cls, data: Any) -> Any:
        """Accept records written as `{..., "metadata": {"filePath", "mtime"}}`."""
        if isinstance(data, dict) and "metadata" in data and "source_path" not in data:
            metadata = data.get("metadata") or {}
            data = {k: v for k, v in data.items() if k != "metadata"}
            data["source_path"] = metadata.get("filePath", "")
            data["modified_at"] = metadata.get("mtime")
        return data


@dataclass(frozen=True, slots=True)
class ScoredChunk:
    """Query hit with cosine similarity score (-1.0 to 1.0, higher is better)."""
    chunk: DocumentChunk
    score: float

    def __repr__(self) -> str:
        preview = self.chunk.text[:50] + "..." if len(self.chunk.text) > 50 else self.chunk.text
        return f"ScoredChunk(score={self.score:.3f}, id={self.chunk.id!r}, text='{preview}')"


_CHUNK_LIST = TypeAdapter(list[DocumentChunk])


def _require_usable(vector: list[float], what: str) -> None:
    if not is_usable_vector(vector):
        raise ValidationError(f"{what} is empty, non-finite or has zero magnitude")


# =============================================================================
# Vector Store
# =============================================================================

class VectorStore:
    """
    Exact cosine-similarity index over document chunks.

    All chunks of one source path form a generation that is replaced
    atomically by `upsert`.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path) if path is not None else settings.VECTOR_STORE_PATH
        self._chunks: list[DocumentChunk] = []
        self._save_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._chunks)

    # =========================================================================
    # Mutation
    # =========================================================================

    def upsert(self, chunks: Iterable[DocumentChunk]) -> None:
        """Replace every chunk of the incoming source paths with `chunks`."""
        incoming = list(chunks)
        if not incoming:
            return
        for chunk in incoming:
            _require_usable(chunk.vector, f"Vector of chunk {chunk.id}")

        paths = {chunk.source_path for chunk in incoming}
        self._chunks = [c for c in self._chunks if c.source_path not in paths]
        self._chunks.extend(incoming)
        logger.debug("Upserted %d chunks for %d document(s)", len(incoming), len(paths))

    def delete_by_source(self, source_path: str) -> int:
        """Remove all chunks of `source_path`; returns how many were removed."""
        before = len(self._chunks)
        self._chunks = [c for c in self._chunks if c.source_path != source_path]
        removed = before - len(self._chunks)
        if removed:
            logger.info("Deleted %d chunks for %s", removed, source_path)
        return removed

    # =========================================================================
    # Lookup
    # =========================================================================

    def get_modified_at(self, source_path: str) -> float | None:
        """Stamp of the indexed generation for `source_path`, None if never indexed."""
        for chunk in self._chunks:
            if chunk.source_path == source_path:
                return chunk.modified_at
        return None

    def chunks_for(self, source_path: str) -> list[DocumentChunk]:
        return [c for c in self._chunks if c.source_path == source_path]

    def query(
        self,
        vector: list[float],
        k: int = 5,
        path_prefix: str | None = None,
    ) -> list[ScoredChunk]:
        """
        Top-k chunks by cosine similarity to `vector`.

        Args:
            vector: Query embedding (finite, non-zero)
            k: Maximum number of hits
            path_prefix: Only consider chunks whose source path starts with it

        Returns:
            Hits sorted by descending score; ties keep insertion order

        Raises:
            ValidationError: Unusable query vector or k < 1
        """
        if k < 1:
            raise ValidationError(f"k must be at least 1, got {k}")
        _require_usable(vector, "Query vector")

        candidates = [
            c for c in self._chunks
            if (not path_prefix or c.source_path.startswith(path_prefix)) and len(c.vector) == len(vector)
        ]
        if not candidates:
            return []

        matrix = np.asarray([c.vector for c in candidates], dtype=np.float64)
        query = np.asarray(vector, dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        scores = np.divide(matrix @ query, norms, out=np.zeros(len(candidates)), where=norms > 0)

        order = np.argsort(-scores, kind="stable")[:k]
        return [ScoredChunk(chunk=candidates[i], score=float(scores[i])) for i in order]

    # =========================================================================
    # Persistence
    # =========================================================================

    async def load(self) -> None:
        """Replace the in-memory index with the persisted one (empty if none)."""
        if not await aiofiles.os.path.exists(self.path):
            logger.info("Vector store not found at %s, starting fresh", self.path)
            self._chunks = []
            return

        async with aiofiles.open(self.path, "rb") as f:
            content = await f.read()

        try:
            self._chunks = _CHUNK_LIST.validate_json(content) if content.strip() else []
        except ValueError as e:
            logger.error("Failed to load vector store %s, starting fresh: %s", self.path, e)
            self._chunks = []
            return

        logger.info("Vector store loaded %d chunks", len(self._chunks))

    async def save(self) -> None:
        """Write the whole index as one JSON array (temp file + rename)."""
        async with self._save_lock:
            payload = _CHUNK_LIST.dump_json(self._chunks)
            tmp_path = self.path.with_name(self.path.name + ".tmp")
            try:
                await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
                async with aiofiles.open(tmp_path, "wb") as f:
                    await f.write(payload)
                await aiofiles.os.replace(tmp_path, self.path)
            except OSError as e:
                logger.error("Failed to save vector store to %s: %s", self.path, e)
                raise VectorStoreError("Failed to save vector store", details=str(e))

        logger.debug("Vector store saved (%d chunks)", len(self._chunks))
