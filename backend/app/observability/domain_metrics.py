from __future__ import annotations

from prometheus_client import Counter, Histogram

chat_requests_total = Counter(
    "resume_chat_requests_total",
    "Total chat requests by outcome before streaming starts",
    ["outcome"],
)

chat_request_latency_seconds = Histogram(
    "resume_chat_request_latency_seconds",
    "Latency from request receipt to first streamed byte in seconds",
    ["outcome"],
)

retrieved_chunks = Histogram(
    "resume_chat_retrieved_chunks",
    "Number of passages returned by the similarity store per request",
    buckets=(0, 1, 2, 3, 4, 6, 8, 12, 16),
)

stream_frames_skipped_total = Counter(
    "resume_chat_stream_frames_skipped_total",
    "Upstream event-stream frames skipped because they could not be decoded",
)

tool_invocations_total = Counter(
    "resume_chat_tool_invocations_total",
    "Tool invocations performed during answer generation",
    ["tool", "status"],
)

bootstrap_passages_total = Counter(
    "resume_chat_bootstrap_passages_total",
    "Passages loaded into the similarity store by first-use bootstrap",
)
