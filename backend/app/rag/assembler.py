from __future__ import annotations

from typing import Sequence

from ..schemas.rag import RetrievedChunk


def format_chunk(chunk: RetrievedChunk) -> str:
    return f"Chunk {chunk.rank} [{chunk.section} | {chunk.id}]:\n{chunk.text}"


def assemble_context(chunks: Sequence[RetrievedChunk]) -> str:
    """
    Join retrieved chunks into one labelled context block.

    Chunks are emitted in the order given (the similarity ranking) and
    separated by a blank line. The block size is controlled by how many
    chunks are requested from the store, not here.
    """
    return "\n\n".join(format_chunk(chunk) for chunk in chunks)
