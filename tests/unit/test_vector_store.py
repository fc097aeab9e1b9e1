"""Tests for the vector store."""
from __future__ import annotations

import json
import math

import pytest

from notebridge.exceptions import ValidationError, VectorStoreError
from notebridge.vector_store import DocumentChunk, VectorStore


def _chunk(path: str, ordinal: int, vector: list[float], text: str | None = None, mtime: float = 1.0) -> DocumentChunk:
    return DocumentChunk(
        id=DocumentChunk.make_id(path, ordinal),
        text=text or f"{path} #{ordinal}",
        vector=vector,
        source_path=path,
        modified_at=mtime,
    )


class TestMutation:
    def test_upsert_replaces_whole_generation(self, store: VectorStore):
        store.upsert([_chunk("a.md", 0, [1, 0]), _chunk("a.md", 1, [0, 1]), _chunk("b.md", 0, [1, 1])])

        store.upsert([_chunk("a.md", 0, [1, 0], text="new", mtime=2.0)])

        assert [c.id for c in store.chunks_for("a.md")] == ["a.md#0"]
        assert store.chunks_for("a.md")[0].text == "new"
        assert len(store.chunks_for("b.md")) == 1
        assert store.get_modified_at("a.md") == 2.0

    def test_delete_by_source(self, store: VectorStore):
        store.upsert([_chunk("a.md", 0, [1, 0]), _chunk("a.md", 1, [0, 1]), _chunk("b.md", 0, [1, 1])])

        assert store.delete_by_source("a.md") == 2
        assert store.delete_by_source("a.md") == 0
        assert store.get_modified_at("a.md") is None
        assert len(store) == 1

    @pytest.mark.parametrize("vector", [[0.0, 0.0], [], [math.nan, 1.0], [math.inf, 0.0]])
    def test_unusable_vector_rejected_on_upsert(self, store: VectorStore, vector: list[float]):
        store.upsert([_chunk("good.md", 0, [1.0, 0.0])])

        with pytest.raises(ValidationError):
            store.upsert([_chunk("a.md", 0, [1.0, 0.0]), _chunk("a.md", 1, vector)])

        assert len(store) == 1
        assert store.get_modified_at("a.md") is None


class TestQuery:
    def test_results_sorted_and_limited(self, store: VectorStore):
        store.upsert([
            _chunk("far.md", 0, [0.0, 1.0]),
            _chunk("near.md", 0, [1.0, 0.1]),
            _chunk("exact.md", 0, [2.0, 0.0]),
        ])

        hits = store.query([1.0, 0.0], k=2)

        assert [h.chunk.source_path for h in hits] == ["exact.md", "near.md"]
        assert hits[0].score == pytest.approx(1.0)
        assert hits[0].score >= hits[1].score

    def test_fewer_chunks_than_k(self, store: VectorStore):
        store.upsert([_chunk("a.md", 0, [1.0, 0.0])])

        assert len(store.query([1.0, 0.0], k=5)) == 1

    def test_ties_keep_insertion_order(self, store: VectorStore):
        store.upsert([_chunk("first.md", 0, [1.0, 0.0]), _chunk("second.md", 0, [3.0, 0.0])])

        hits = store.query([1.0, 0.0], k=2)

        assert [h.chunk.source_path for h in hits] == ["first.md", "second.md"]

    def test_path_prefix_filter(self, store: VectorStore):
        store.upsert([
            _chunk("Work/a.md", 0, [1.0, 0.0]),
            _chunk("Home/b.md", 0, [1.0, 0.0]),
            _chunk("Work/.memory/c1/1.md", 0, [0.5, 0.5]),
        ])

        hits = store.query([1.0, 0.0], k=10, path_prefix="Work/")

        assert {h.chunk.source_path for h in hits} == {"Work/a.md", "Work/.memory/c1/1.md"}

    def test_mismatched_dimensions_are_ignored(self, store: VectorStore):
        store.upsert([_chunk("two.md", 0, [1.0, 0.0]), _chunk("three.md", 0, [1.0, 0.0, 0.0])])

        hits = store.query([1.0, 0.0], k=5)

        assert [h.chunk.source_path for h in hits] == ["two.md"]

    def test_empty_store(self, store: VectorStore):
        assert store.query([1.0, 0.0], k=3) == []

    def test_invalid_queries(self, store: VectorStore):
        with pytest.raises(ValidationError):
            store.query([0.0, 0.0], k=3)
        with pytest.raises(ValidationError):
            store.query([math.nan, 1.0], k=3)
        with pytest.raises(ValidationError):
            store.query([1.0, 0.0], k=0)


class TestPersistence:
    @pytest.mark.asyncio
    async def test_save_and_load(self, tmp_path):
        path = tmp_path / "nested" / "vector_store.json"
        store = VectorStore(path)
        store.upsert([_chunk("a.md", 0, [0.25, 0.75], text="alpha", mtime=1700000000.5)])

        await store.save()
        reloaded = VectorStore(path)
        await reloaded.load()

        chunk = reloaded.chunks_for("a.md")[0]
        assert chunk.text == "alpha"
        assert chunk.vector == [0.25, 0.75]
        assert reloaded.get_modified_at("a.md") == 1700000000.5
        assert not (tmp_path / "nested" / "vector_store.json.tmp").exists()

    @pytest.mark.asyncio
    async def test_rejected_vector_never_reaches_disk(self, tmp_path):
        path = tmp_path / "vector_store.json"
        store = VectorStore(path)
        store.upsert([_chunk("good.md", 0, [1.0, 0.0])])
        with pytest.raises(ValidationError):
            store.upsert([_chunk("bad.md", 0, [math.nan, 1.0])])

        await store.save()
        reloaded = VectorStore(path)
        await reloaded.load()

        assert len(reloaded) == 1
        assert reloaded.get_modified_at("good.md") == 1.0

    @pytest.mark.asyncio
    async def test_missing_file_loads_empty(self, tmp_path):
        store = VectorStore(tmp_path / "absent.json")

        await store.load()

        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_corrupt_file_loads_empty(self, tmp_path):
        path = tmp_path / "vector_store.json"
        path.write_text("{not json", encoding="utf-8")
        store = VectorStore(path)

        await store.load()

        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_legacy_record_shape(self, tmp_path):
        path = tmp_path / "vector_store.json"
        path.write_text(json.dumps([{
            "id": "Notes/a.md#0",
            "text": "alpha",
            "vector": [1, 0],
            "metadata": {"filePath": "Notes/a.md", "mtime": 1234},
        }]), encoding="utf-8")
        store = VectorStore(path)

        await store.load()

        assert store.get_modified_at("Notes/a.md") == 1234
        assert store.chunks_for("Notes/a.md")[0].text == "alpha"

    @pytest.mark.asyncio
    async def test_unwritable_location(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")
        store = VectorStore(blocker / "vector_store.json")
        store.upsert([_chunk("a.md", 0, [1.0])])

        with pytest.raises(VectorStoreError):
            await store.save()
