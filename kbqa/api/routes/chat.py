"""Streaming chat endpoint.

Retrieval -> sanitization -> generation, delivered as Server-Sent Events.
"""

import json
import logging
from contextlib import aclosing
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from kbqa.api.dependencies import get_chat_service
from kbqa.api.schemas import ChatRequest
from kbqa.errors import (
    GenerationUnavailableError,
    ProviderError,
    RetrievalUnavailableError,
)
from kbqa.rag.orchestrator import FinishEvent, TokenEvent
from kbqa.rag.service import ChatService, RetrievalEvent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

UNAVAILABLE_MESSAGE = "The assistant is temporarily unavailable. Please try again shortly."


# ========== SSE Event Helpers ==========

def _send_sse(event_type: str, data: dict) -> str:
    return f"event: {event_type}\ndata: {json.dumps(data)}\n\n"


def _stream_start(session_id: str) -> str:
    return _send_sse("start", {"status": "starting", "session_id": session_id})


def _stream_retrieval_complete(event: RetrievalEvent) -> str:
    return _send_sse(
        "retrieval_complete",
        {
            "chunks": [r.to_dict() for r in event.results],
            "candidates": event.candidates,
            "retrieval_time_ms": event.retrieval_ms,
            "safety": event.report.to_dict(),
        },
    )


def _stream_generation_delta(delta: str) -> str:
    return _send_sse("generation_delta", {"delta": delta})


def _stream_generation_complete(event: FinishEvent) -> str:
    result = event.result
    return _send_sse(
        "generation_complete",
        {
            "answer": result.text,
            "blocked": result.blocked,
            "citations": [c.to_dict() for c in result.citations],
            "metadata": result.metadata(),
        },
    )


def _stream_complete(session_id: str) -> str:
    return _send_sse("complete", {"session_id": session_id})


def _stream_error(error: str, kind: str) -> str:
    return _send_sse("error", {"error": error, "kind": kind})


# ========== Main Chat Endpoint ==========

@router.post("")
async def chat(
    request: ChatRequest,
    http_request: Request,
    service: ChatService = Depends(get_chat_service),
):
    """Answer a question over the knowledge base as an SSE stream.

    Malformed and policy-violating requests are rejected before the stream
    opens (400 / 403). Outages during the stream end it with an error event.
    """
    query = service.check_request(request.session_id, request.query)

    async def event_generator() -> AsyncGenerator[str, None]:
        yield _stream_start(request.session_id)
        try:
            async with aclosing(service.answer(request.session_id, query)) as events:
                async for event in events:
                    if await http_request.is_disconnected():
                        logger.info("client disconnected: session=%s", request.session_id)
                        return
                    if isinstance(event, RetrievalEvent):
                        yield _stream_retrieval_complete(event)
                    elif isinstance(event, TokenEvent):
                        yield _stream_generation_delta(event.text)
                    elif isinstance(event, FinishEvent):
                        yield _stream_generation_complete(event)
        except RetrievalUnavailableError:
            logger.error("retrieval outage: session=%s", request.session_id)
            yield _stream_error(UNAVAILABLE_MESSAGE, "retrieval_unavailable")
            return
        except (GenerationUnavailableError, ProviderError):
            logger.error("generation outage: session=%s", request.session_id)
            yield _stream_error(UNAVAILABLE_MESSAGE, "generation_unavailable")
            return
        except Exception:
            logger.exception("chat request failed: session=%s", request.session_id)
            yield _stream_error("Chat request failed", "internal")
            return

        yield _stream_complete(request.session_id)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
