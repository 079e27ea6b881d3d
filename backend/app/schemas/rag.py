from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field, field_validator
from pydantic.config import ConfigDict


class Passage(BaseModel):
    """
    A stored unit of retrievable knowledge: text plus its embedding.

    Passages are keyed by `id`; upserting a passage with an existing id
    replaces its section, text and vector.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(..., min_length=1, description="Stable unique identifier.")
    section: str = Field(
        ...,
        description="Coarse category label, e.g. 'experience' or 'education'.",
    )
    text: str = Field(..., min_length=1, description="Passage body, plain text.")
    vector: List[float] = Field(..., description="Precomputed embedding.")

    @field_validator("text")
    @classmethod
    def validate_text(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("passage text must not be blank")
        return value


class SeedRecord(BaseModel):
    """
    One entry of the seed payload produced by the offline embedding job:
    `{ "id", "section", "chunk_text", "embedding" }`.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    section: str
    chunk_text: str
    embedding: List[float]

    def to_passage(self) -> Passage:
        return Passage(
            id=self.id,
            section=self.section,
            text=self.chunk_text,
            vector=self.embedding,
        )


class RetrievedChunk(BaseModel):
    """
    A read-only view of a Passage at its rank (1..K) in one query's results.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    section: str
    text: str
    rank: int = Field(..., ge=1)
    distance: float = Field(
        ...,
        description="Cosine distance to the query vector (lower = more similar).",
    )
