"""
Chat endpoints.

This module provides:
- Streaming chat (plain text chunks) with note context
- One-shot chat completion with tool calls and context sources
- Rate limiting through the shared slowapi limiter

Usage:
    POST /chat
    {
        "messages": [{"role": "user", "content": "What did I note about tides?"}],
        "model": "local:llama3:8b",
        "scope": "Ocean",
        "conversation_id": "c-42"
    }
"""

import time
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from notebridge.cancellation import CancellationToken
from notebridge.config import get_logger, settings
from notebridge.dependencies import get_app_state, limiter
from notebridge.models import (
    ChatCompletionResponse,
    ChatRequestBody,
    SourceModel,
    ToolCallModel,
)
from notebridge.state import AppState

logger = get_logger("routes.chat")

router = APIRouter(tags=["Chat"])


# =============================================================================
# Response Headers
# =============================================================================

STREAMING_HEADERS: dict[str, str] = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


# =============================================================================
# Streaming Chat
# =============================================================================

@router.post(
    "/chat",
    summary="Chat with a model",
    description="Streams the answer as plain text. Retrieves note context unless `use_context` is false.",
    responses={
        200: {
            "description": "Streaming text response",
            "content": {"text/plain": {"example": "Your notes say the tide turns at 6pm."}},
        },
        429: {"description": "Rate limit exceeded"},
    },
)
@limiter.limit(settings.RATE_LIMIT)
async def chat_endpoint(
    request: Request,
    body: ChatRequestBody,
    state: AppState = Depends(get_app_state),
) -> StreamingResponse:
    """
    Process a chat turn and stream the response.

    Errors after the stream started are reported in-band as an error
    marker; a client disconnect cancels the upstream request.
    """
    start_time = time.perf_counter()
    token = CancellationToken()
    chat_request = body.to_chat_request()
    chat_request.cancel_token = token

    logger.info(
        "Chat request | messages=%d | model=%s | scope=%s | context=%s",
        len(body.messages),
        body.model or "(default)",
        body.scope,
        body.use_context,
    )

    async def stream_response() -> AsyncIterator[str]:
        chunk_count = 0
        completed = False
        try:
            async for chunk in state.chat.stream_reply(
                chat_request,
                scope=body.scope,
                conversation_id=body.conversation_id,
                use_context=body.use_context,
            ):
                chunk_count += 1
                yield chunk
            completed = True
        finally:
            if not completed:
                token.cancel()
            logger.info(
                "Stream complete | chunks=%d | total_ms=%.1f | completed=%s",
                chunk_count,
                (time.perf_counter() - start_time) * 1000,
                completed,
            )

    return StreamingResponse(
        content=stream_response(),
        media_type="text/plain",
        headers=dict(STREAMING_HEADERS),
    )


# =============================================================================
# One-shot Completion
# =============================================================================

@router.post(
    "/chat/complete",
    response_model=ChatCompletionResponse,
    summary="Chat completion",
    description="Returns the whole answer at once, including tool calls.",
)
@limiter.limit(settings.RATE_LIMIT)
async def chat_complete_endpoint(
    request: Request,
    body: ChatRequestBody,
    state: AppState = Depends(get_app_state),
) -> ChatCompletionResponse:
    result, hits = await state.chat.complete_reply(
        body.to_chat_request(),
        scope=body.scope,
        use_context=body.use_context,
    )
    return ChatCompletionResponse(
        content=result.content,
        tool_calls=[ToolCallModel.from_tool_call(call) for call in result.tool_calls],
        sources=[SourceModel(path=hit.source_path, score=hit.score) for hit in hits],
    )
