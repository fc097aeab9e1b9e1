"""
Embedding, search and indexing endpoints.

Usage:
    POST   /embed             - Embed a text with the local embedding model
    POST   /search            - Nearest chunks for a query
    POST   /index/documents   - Index changed documents (full pass)
    GET    /index/documents   - Indexed chunks of one document
    POST   /index/sync        - Background sync of changed documents
    DELETE /index/documents   - Remove documents from the index
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from notebridge.config import get_logger
from notebridge.dependencies import get_app_state
from notebridge.indexer import SourceDocument
from notebridge.models import (
    DeleteDocumentsRequest,
    DeleteDocumentsResponse,
    EmbedRequest,
    EmbedResponse,
    IndexDocumentsRequest,
    IndexedChunkModel,
    IndexedDocumentResponse,
    IndexResponse,
    SearchHitModel,
    SearchRequest,
    SearchResponse,
)
from notebridge.state import AppState

logger = get_logger("routes.index")

router = APIRouter(tags=["Index"])


def _documents(body: IndexDocumentsRequest) -> list[SourceDocument]:
    return [SourceDocument(path=d.path, text=d.text, modified_at=d.modified_at) for d in body.documents]


@router.post("/embed", response_model=EmbedResponse, summary="Embed text")
async def embed(body: EmbedRequest, state: AppState = Depends(get_app_state)) -> EmbedResponse:
    vector = await state.gateway.embed(body.text)
    return EmbedResponse(vector=vector, dimensions=len(vector))


@router.post("/search", response_model=SearchResponse, summary="Semantic search")
async def search(body: SearchRequest, state: AppState = Depends(get_app_state)) -> SearchResponse:
    """Unlike chat retrieval, errors are reported to the caller."""
    vector = await state.gateway.embed(body.query)
    scored = state.store.query(vector, k=body.k, path_prefix=body.path_prefix)
    return SearchResponse(
        hits=[
            SearchHitModel(id=s.chunk.id, source_path=s.chunk.source_path, text=s.chunk.text, score=s.score)
            for s in scored
        ]
    )


@router.get("/index/documents", response_model=IndexedDocumentResponse, summary="Inspect an indexed document")
async def get_document(
    path: str = Query(..., min_length=1),
    state: AppState = Depends(get_app_state),
) -> IndexedDocumentResponse:
    chunks = state.store.chunks_for(path)
    return IndexedDocumentResponse(
        path=path,
        modified_at=chunks[0].modified_at if chunks else None,
        chunks=[IndexedChunkModel(id=c.id, text=c.text) for c in chunks],
    )


@router.post("/index/documents", response_model=IndexResponse, summary="Index documents")
async def index_documents(
    body: IndexDocumentsRequest,
    state: AppState = Depends(get_app_state),
) -> IndexResponse:
    documents = _documents(body)

    def on_progress(done: int, total: int) -> None:
        logger.debug("Indexing progress %d/%d", done, total)

    updated = await state.indexer.index_all(documents, on_progress=on_progress)
    return IndexResponse(updated=updated, total=len(documents), chunks=len(state.store))


@router.post("/index/sync", response_model=IndexResponse, summary="Sync changed documents")
async def sync_documents(
    body: IndexDocumentsRequest,
    state: AppState = Depends(get_app_state),
) -> IndexResponse:
    documents = _documents(body)
    updated = await state.indexer.sync_all(documents)
    return IndexResponse(updated=updated, total=len(documents), chunks=len(state.store))


@router.delete("/index/documents", response_model=DeleteDocumentsResponse, summary="Remove documents")
async def delete_documents(
    body: DeleteDocumentsRequest,
    state: AppState = Depends(get_app_state),
) -> DeleteDocumentsResponse:
    removed = 0
    for path in body.paths:
        removed += await state.indexer.delete_document(path)
    return DeleteDocumentsResponse(removed=removed)
