"""
Chat API Route

Streams a single chat turn as Server-Sent Events:

- `fragment`: one piece of the assistant's reply, `{"text": ...}`
- `done`: the turn was saved, `{"session_id", "message_count", "persisted"}`
- `error`: the turn failed after streaming began; payload is the error envelope

Failures before the first fragment (unknown session, no access, provider
down) are returned as ordinary JSON errors with the matching status.
"""

import json
from contextlib import aclosing
from typing import AsyncIterator

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from parley.api.deps import get_chat_pipeline, require_identity
from parley.auth.context import IdentityClaim
from parley.chat.pipeline import ChatPipeline, ChatTurn
from parley.kernel.errors import ParleyError
from parley.kernel.http.errors import envelope_for

logger = structlog.get_logger()

router = APIRouter()


class ChatRequest(BaseModel):
    """Request body for a chat turn."""

    prompt: str | None = Field(
        default=None,
        description="User prompt. Null or empty is sent as an empty user message.",
    )


def _sse_event(event_type: str, data: dict) -> str:
    """Format SSE event."""
    return f"event: {event_type}\ndata: {json.dumps(data)}\n\n"


async def _event_stream(
    request: Request,
    turn: ChatTurn,
    fragments: AsyncIterator[str],
    first: str | None,
) -> AsyncIterator[str]:
    async with aclosing(fragments):
        if first is not None:
            yield _sse_event("fragment", {"text": first})
            try:
                async for fragment in fragments:
                    yield _sse_event("fragment", {"text": fragment})
            except ParleyError as e:
                logger.warning("Chat stream ended with error", session_id=turn.session_id, code=e.code)
                yield _sse_event("error", envelope_for(request, e))
                return

        yield _sse_event(
            "done",
            {
                "session_id": turn.session_id,
                "message_count": len(turn.result.messages) if turn.result else None,
                "persisted": turn.result is not None,
            },
        )


@router.post("/chat/{session_id}")
async def chat(
    session_id: str,
    http_request: Request,
    body: ChatRequest | None = None,
    identity: IdentityClaim = Depends(require_identity),
    pipeline: ChatPipeline = Depends(get_chat_pipeline),
):
    """
    Send a prompt to a session and stream the assistant's reply.

    The user prompt and the full reply are saved to the session only after the
    provider finishes. If the caller disconnects mid-stream, nothing is saved.
    """
    prompt = body.prompt if body else None
    turn = await pipeline.start(session_id, identity, prompt)

    fragments = turn.stream(http_request.is_disconnected)
    try:
        first: str | None = await anext(fragments)
    except StopAsyncIteration:
        first = None

    return StreamingResponse(
        _event_stream(http_request, turn, fragments, first),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )
