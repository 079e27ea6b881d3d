from __future__ import annotations

import time
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from starlette.background import BackgroundTask

from ...core.config import ConfigurationError
from ...core.embeddings import EmbeddingFailure
from ...core.llm import LLMError
from ...core.prompt import build_system_prompt
from ...core.relay import StreamingRelay
from ...core.resources import ChatResources
from ...db.session import StoreConnectionError
from ...observability.domain_metrics import (
    chat_request_latency_seconds,
    chat_requests_total,
)
from ...observability.logging import get_logger
from ...observability.otel import tracer
from ...rag.assembler import assemble_context
from ...rag.retriever import retrieve_top_chunks
from ...rag.store import RAGStoreError
from ...schemas.request import ChatRequest
from ...schemas.response import ErrorResponse
from ..deps import get_resources

logger = get_logger("api.chat")

router = APIRouter(tags=["chat"])

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
}


def _error(
    status_code: int,
    message: str,
    outcome: str,
    started: float,
    details: Optional[str] = None,
) -> JSONResponse:
    chat_requests_total.labels(outcome=outcome).inc()
    chat_request_latency_seconds.labels(outcome=outcome).observe(time.perf_counter() - started)
    body = ErrorResponse(error=message, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@router.post(
    "/chat",
    summary="Ask a question; the grounded answer is streamed back as plain text.",
    response_class=StreamingResponse,
    responses={
        400: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def chat(
    request: Request,
    resources: ChatResources = Depends(get_resources),
) -> Response:
    started = time.perf_counter()

    try:
        raw = await request.json()
    except ValueError:
        raw = None
    try:
        payload = ChatRequest.model_validate(raw)
    except ValidationError:
        return _error(
            400, "Invalid request body: message is required", "invalid_request", started
        )

    try:
        resources.check_configuration()
        with tracer.start_as_current_span("chat.retrieve") as span:
            chunks = await retrieve_top_chunks(
                store=resources.store,
                embedder=resources.embedder,
                seed_provider=resources.seed_provider,
                question=payload.message,
                top_k=resources.top_k,
            )
            span.set_attribute("rag.top_k", resources.top_k)
            span.set_attribute("rag.returned", len(chunks))
        system_prompt = build_system_prompt(
            assemble_context(chunks),
            persona_name=resources.persona_name,
        )
        with tracer.start_as_current_span("chat.generate.first_event") as span:
            span.set_attribute("llm.model", resources.generator.cfg.model)
            stream = resources.generator.generate(
                system_prompt,
                payload.message,
                tools=resources.tools,
            )
            relay = StreamingRelay(stream)
            await relay.prime()
    except StoreConnectionError as exc:
        logger.error("Similarity store unavailable", extra={"error": exc.details})
        return _error(500, str(exc), "store_unavailable", started, details=exc.details)
    except ConfigurationError as exc:
        logger.error("Configuration error", extra={"error": str(exc)})
        return _error(500, str(exc), "configuration_error", started)
    except EmbeddingFailure as exc:
        logger.error(
            "Embedding failed",
            extra={"status_code": exc.status_code, "retryable": exc.retryable},
        )
        return _error(
            504 if exc.retryable else 500,
            str(exc),
            "embedding_failed",
            started,
            details=exc.body or None,
        )
    except RAGStoreError as exc:
        logger.error("Similarity search failed", extra={"error": str(exc)})
        return _error(500, "Similarity search failed", "store_error", started, details=str(exc))
    except LLMError as exc:
        logger.error(
            "Generation failed before streaming",
            extra={"status_code": exc.status_code, "retryable": exc.retryable},
        )
        return _error(
            504 if exc.retryable else 500,
            str(exc),
            "generation_failed",
            started,
            details=exc.body or None,
        )
    except Exception as exc:
        logger.exception("Unexpected chat failure")
        return _error(500, str(exc) or "Unknown error", "unexpected_error", started)

    chat_requests_total.labels(outcome="streaming").inc()
    chat_request_latency_seconds.labels(outcome="streaming").observe(
        time.perf_counter() - started
    )
    return StreamingResponse(
        relay.body(),
        media_type="text/plain; charset=utf-8",
        headers=STREAM_HEADERS,
        # Closes the upstream even if the body is never iterated.
        background=BackgroundTask(relay.aclose),
    )
