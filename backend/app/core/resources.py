from __future__ import annotations

from typing import List, Optional

from ..db.session import DuckDBPool
from ..observability.logging import get_logger
from ..rag.seed import JsonSeedProvider, SeedProvider
from ..rag.store import DuckDBVectorStore, InMemoryVectorStore, VectorStore
from ..tools.base import Tool
from ..tools.contact_tools import build_contact_tools
from ..tools.notifier import PushoverNotifier
from .config import ConfigurationError, Settings, settings
from .embeddings import EmbeddingClient
from .llm import GroundedAnswerGenerator

logger = get_logger("core.resources")


class ChatResources:
    """
    Long-lived handles shared by chat requests: similarity store (and its
    connection pool), embedding client, answer generator, notification sink.

    Every member is built on first access so a missing credential surfaces
    on the request that needs it rather than at import time. Tests pass
    ready-made fakes through the keyword arguments.
    """

    def __init__(
        self,
        cfg: Optional[Settings] = None,
        *,
        store: Optional[VectorStore] = None,
        embedder: Optional[EmbeddingClient] = None,
        generator: Optional[GroundedAnswerGenerator] = None,
        notifier: Optional[PushoverNotifier] = None,
        seed_provider: Optional[SeedProvider] = None,
        tools: Optional[List[Tool]] = None,
    ) -> None:
        self.settings = cfg or settings
        self._store = store
        self._embedder = embedder
        self._generator = generator
        self._notifier = notifier
        self._seed_provider = seed_provider
        self._tools = tools

    @property
    def top_k(self) -> int:
        return self.settings.retrieval.top_k

    @property
    def persona_name(self) -> str:
        return self.settings.generation.persona_name

    @property
    def store(self) -> VectorStore:
        if self._store is None:
            store_cfg = self.settings.store
            dimension = self.settings.embedding.dimension
            if store_cfg.backend == "local_file":
                self._store = InMemoryVectorStore(dimension)
            else:
                pool = DuckDBPool(store_cfg.database_url, pool_size=store_cfg.pool_size)
                self._store = DuckDBVectorStore(
                    pool,
                    dimension=dimension,
                    table_name=store_cfg.table_name,
                )
            logger.info(
                "Initialized similarity store",
                extra={"backend": store_cfg.backend, "dimension": dimension},
            )
        return self._store

    @property
    def embedder(self) -> EmbeddingClient:
        if self._embedder is None:
            self._embedder = EmbeddingClient(self.settings.embedding)
        return self._embedder

    @property
    def generator(self) -> GroundedAnswerGenerator:
        if self._generator is None:
            gen_cfg = self.settings.generation
            self._generator = GroundedAnswerGenerator(gen_cfg)
            logger.info("Initialized answer generator", extra={"model": gen_cfg.model})
        return self._generator

    @property
    def notifier(self) -> PushoverNotifier:
        if self._notifier is None:
            self._notifier = PushoverNotifier(self.settings.notification)
        return self._notifier

    @property
    def tools(self) -> List[Tool]:
        if self._tools is None:
            self._tools = build_contact_tools(self.notifier)
        return self._tools

    @property
    def seed_provider(self) -> SeedProvider:
        if self._seed_provider is None:
            self._seed_provider = JsonSeedProvider(self.settings.retrieval.seed_path)
        return self._seed_provider

    def check_configuration(self) -> None:
        """
        Fail fast on missing credentials or datastore address, before any
        network or database work.
        """
        # Building the clients validates their credentials.
        _ = self.embedder
        _ = self.generator
        store_cfg = self.settings.store
        if self._store is None and store_cfg.backend == "duckdb" and not store_cfg.database_url:
            raise ConfigurationError("Missing DATABASE_URL")

    async def aclose(self) -> None:
        for resource in (self._embedder, self._generator, self._notifier, self._store):
            if resource is not None:
                await resource.aclose()
        logger.info("Released chat resources")
