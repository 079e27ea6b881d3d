from __future__ import annotations

from typing import List, Protocol, Sequence

from ..observability.domain_metrics import retrieved_chunks
from ..observability.logging import get_logger
from ..schemas.rag import RetrievedChunk
from .seed import SeedProvider
from .store import VectorStore

logger = get_logger("rag.retriever")


class Embedder(Protocol):
    async def embed(self, text: str) -> Sequence[float]:
        ...


async def retrieve_top_chunks(
    store: VectorStore,
    embedder: Embedder,
    seed_provider: SeedProvider,
    question: str,
    top_k: int,
) -> List[RetrievedChunk]:
    """
    Question -> top-k passages.

    One store connection is held for bootstrap and query and is returned to
    the pool however this exits. The connection is opened before the
    embedding call so an unreachable store fails fast.
    """
    async with store.acquire() as session:
        await store.ensure_bootstrapped(seed_provider, session=session)
        vector = await embedder.embed(question)
        chunks = await session.query(vector, top_k)

    retrieved_chunks.observe(len(chunks))
    logger.info(
        "RAG retrieval",
        extra={"top_k": top_k, "returned": len(chunks), "ids": [c.id for c in chunks]},
    )
    return chunks
