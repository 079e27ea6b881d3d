from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence

from ..core.resources import ChatResources
from ..observability.logging import setup_logging
from .retriever import retrieve_top_chunks


async def load_and_query(
    resources: ChatResources,
    question: str,
    top_k: int,
) -> List[Dict[str, Any]]:
    """
    Operator check for a deployment:

    - Upserts every passage from the seed file (idempotent, keyed by id)
    - Embeds `question` and returns the top-k chunks with their distances

    Unlike request-time bootstrap this re-applies the seed file even when
    the store already holds passages, so edited seed text is picked up.
    """
    passages = await resources.seed_provider.load()
    await resources.store.upsert(passages)
    chunks = await retrieve_top_chunks(
        store=resources.store,
        embedder=resources.embedder,
        seed_provider=resources.seed_provider,
        question=question,
        top_k=top_k,
    )
    return [chunk.model_dump() for chunk in chunks]


async def _main(question: str, top_k: int) -> None:
    resources = ChatResources()
    try:
        rows = await load_and_query(resources, question, top_k)
    finally:
        await resources.aclose()
    print(json.dumps(rows, indent=2))


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        description="Load the seed embeddings into the similarity store and show the top chunks for a question.",
    )
    parser.add_argument("question", nargs="+", help="Question to retrieve context for.")
    parser.add_argument("--top-k", type=int, default=3, help="Number of chunks to print.")
    args = parser.parse_args(argv)

    question = " ".join(args.question).strip()
    if not question:
        parser.error("question must not be empty")

    setup_logging()
    asyncio.run(_main(question, args.top_k))


if __name__ == "__main__":
    main()
