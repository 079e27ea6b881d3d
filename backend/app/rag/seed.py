from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import List, Protocol, Sequence

from pydantic import TypeAdapter, ValidationError

from ..core.config import ConfigurationError
from ..observability.logging import get_logger
from ..schemas.rag import Passage, SeedRecord

logger = get_logger("rag.seed")

_SEED_RECORDS = TypeAdapter(List[SeedRecord])


class SeedSourceError(ConfigurationError):
    """The seed payload is missing or malformed."""


class SeedProvider(Protocol):
    """Source of the passages used to populate an empty store."""

    async def load(self) -> List[Passage]:
        ...


class JsonSeedProvider:
    """
    Reads the precomputed embeddings file:

        [{"id": ..., "section": ..., "chunk_text": ..., "embedding": [...]}, ...]
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    async def load(self) -> List[Passage]:
        return await asyncio.to_thread(self._load_sync)

    def _load_sync(self) -> List[Passage]:
        if not self.path.exists():
            raise SeedSourceError(f"Seed embeddings file not found: {self.path}")

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            records = _SEED_RECORDS.validate_python(raw)
            passages = [record.to_passage() for record in records]
        except (json.JSONDecodeError, ValidationError) as exc:
            raise SeedSourceError(f"Invalid seed embeddings file {self.path}: {exc}") from exc

        logger.info(
            "Loaded seed passages",
            extra={"path": str(self.path), "passages": len(passages)},
        )
        return passages


class StaticSeedProvider:
    """Serves a fixed, in-memory list of passages."""

    def __init__(self, passages: Sequence[Passage]) -> None:
        self.passages = list(passages)
        self.loads = 0

    async def load(self) -> List[Passage]:
        self.loads += 1
        return list(self.passages)
