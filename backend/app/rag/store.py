from __future__ import annotations

import asyncio
import re
import threading
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Dict, List, Optional, Sequence

import duckdb

from ..db.session import DuckDBPool, StoreConnectionError
from ..observability.domain_metrics import bootstrap_passages_total
from ..observability.logging import get_logger
from ..schemas.rag import Passage, RetrievedChunk
from .vectors import DimensionMismatchError, cosine_distance, ensure_dimension

if TYPE_CHECKING:
    from .seed import SeedProvider

logger = get_logger("rag.store")

__all__ = [
    "DuckDBVectorStore",
    "InMemoryVectorStore",
    "RAGStoreError",
    "StoreConnectionError",
    "StoreSession",
    "VectorStore",
]

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_ARRAY_DIM = re.compile(r"\[(\d+)\]$")


class RAGStoreError(Exception):
    """Base exception for similarity store errors."""


def _dedupe_last_write_wins(passages: Sequence[Passage]) -> List[Passage]:
    by_id: Dict[str, Passage] = {}
    for passage in passages:
        by_id.pop(passage.id, None)
        by_id[passage.id] = passage
    return list(by_id.values())


def _validate_k(k: int) -> None:
    if isinstance(k, bool) or not isinstance(k, int) or k < 1:
        raise ValueError(f"k must be a positive integer, got {k!r}")


class StoreSession:
    """
    Operations available on a checked-out store connection.

    Results of `query` are ordered by ascending cosine distance; equal
    distances are ordered by ascending passage id.
    """

    async def upsert(self, passages: Sequence[Passage]) -> None:
        raise NotImplementedError

    async def query(self, vector: Sequence[float], k: int) -> List[RetrievedChunk]:
        raise NotImplementedError

    async def count(self) -> int:
        raise NotImplementedError


class VectorStore:
    """
    Similarity store: passages plus vectors, nearest-neighbour queries,
    idempotent batch upsert and one-time lazy bootstrap.
    """

    def __init__(self, dimension: int) -> None:
        self.dimension = dimension
        self._bootstrap_lock = asyncio.Lock()
        self._bootstrapped = False

    def acquire(self):  # pragma: no cover - abstract
        """Async context manager yielding a StoreSession."""
        raise NotImplementedError

    async def upsert(self, passages: Sequence[Passage]) -> None:
        async with self.acquire() as session:
            await session.upsert(passages)

    async def query(self, vector: Sequence[float], k: int) -> List[RetrievedChunk]:
        async with self.acquire() as session:
            return await session.query(vector, k)

    async def count(self) -> int:
        async with self.acquire() as session:
            return await session.count()

    async def ensure_bootstrapped(
        self,
        seed_provider: "SeedProvider",
        session: Optional[StoreSession] = None,
    ) -> int:
        """
        Populate an empty store from `seed_provider`, once per store lifetime.

        Concurrent first callers are serialized on a lock; the loser sees the
        flag (or a non-empty store) and does nothing. Returns the number of
        passages loaded by this call.
        """
        if self._bootstrapped:
            return 0

        async with self._bootstrap_lock:
            if self._bootstrapped:
                return 0
            if session is None:
                async with self.acquire() as own_session:
                    loaded = await self._bootstrap(own_session, seed_provider)
            else:
                loaded = await self._bootstrap(session, seed_provider)
            self._bootstrapped = True
            return loaded

    async def _bootstrap(self, session: StoreSession, seed_provider: "SeedProvider") -> int:
        existing = await session.count()
        if existing > 0:
            logger.info("Similarity store already populated", extra={"passages": existing})
            return 0

        passages = await seed_provider.load()
        await session.upsert(passages)
        bootstrap_passages_total.inc(len(passages))
        logger.info("Seeded similarity store", extra={"passages": len(passages)})
        return len(passages)

    async def aclose(self) -> None:
        return None


# DuckDB backend


class _DuckDBSession(StoreSession):
    def __init__(
        self,
        cursor: duckdb.DuckDBPyConnection,
        table: str,
        dimension: int,
    ) -> None:
        self._cursor = cursor
        self._table = table
        self._dimension = dimension

    async def upsert(self, passages: Sequence[Passage]) -> None:
        for passage in passages:
            ensure_dimension(passage.vector, self._dimension, what=f"passage {passage.id!r}")
        rows = [
            [p.id, p.section, p.text, list(p.vector)]
            for p in _dedupe_last_write_wins(passages)
        ]
        if not rows:
            return
        await asyncio.to_thread(self._upsert_rows, rows)

    def _upsert_rows(self, rows: List[list]) -> None:
        sql = f"""
            INSERT INTO {self._table} (id, section, chunk_text, embedding)
            VALUES (?, ?, ?, ?::FLOAT[{self._dimension}])
            ON CONFLICT (id) DO UPDATE SET
                section = EXCLUDED.section,
                chunk_text = EXCLUDED.chunk_text,
                embedding = EXCLUDED.embedding
        """
        self._cursor.begin()
        try:
            self._cursor.executemany(sql, rows)
            self._cursor.commit()
        except Exception as exc:
            self._cursor.rollback()
            if isinstance(exc, duckdb.Error):
                raise RAGStoreError(f"Passage upsert failed: {exc}") from exc
            raise

    async def query(self, vector: Sequence[float], k: int) -> List[RetrievedChunk]:
        _validate_k(k)
        ensure_dimension(vector, self._dimension, what="query vector")
        rows = await asyncio.to_thread(self._query_rows, list(vector), k)
        return [
            RetrievedChunk(
                id=row[0],
                section=row[1],
                text=row[2],
                distance=float(row[3]),
                rank=rank,
            )
            for rank, row in enumerate(rows, start=1)
        ]

    def _query_rows(self, vector: List[float], k: int) -> List[tuple]:
        sql = f"""
            SELECT
                id,
                section,
                chunk_text,
                array_cosine_distance(embedding, ?::FLOAT[{self._dimension}]) AS distance
            FROM {self._table}
            ORDER BY distance ASC, id ASC
            LIMIT ?
        """
        try:
            return self._cursor.execute(sql, [vector, k]).fetchall()
        except duckdb.Error as exc:
            raise RAGStoreError(f"Similarity query failed: {exc}") from exc

    async def count(self) -> int:
        return await asyncio.to_thread(self._count_rows)

    def _count_rows(self) -> int:
        try:
            row = self._cursor.execute(f"SELECT COUNT(*) FROM {self._table}").fetchone()
        except duckdb.Error as exc:
            raise RAGStoreError(f"Passage count failed: {exc}") from exc
        return int(row[0]) if row else 0


class DuckDBVectorStore(VectorStore):
    """
    Similarity store backed by a DuckDB table:

        id TEXT PRIMARY KEY, section TEXT, chunk_text TEXT, embedding FLOAT[D]

    Ranking uses array_cosine_distance over a full scan.
    """

    def __init__(
        self,
        pool: DuckDBPool,
        dimension: int,
        table_name: str = "rag_embeddings",
    ) -> None:
        super().__init__(dimension)
        if not _IDENTIFIER.fullmatch(table_name):
            raise ValueError(f"Invalid table name {table_name!r}")
        self.pool = pool
        self.table_name = table_name
        self._schema_ready = False
        self._schema_lock = threading.Lock()

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[StoreSession]:
        async with self.pool.acquire() as cursor:
            if not self._schema_ready:
                await asyncio.to_thread(self._ensure_schema, cursor)
            yield _DuckDBSession(cursor, self.table_name, self.dimension)

    def _ensure_schema(self, cursor: duckdb.DuckDBPyConnection) -> None:
        with self._schema_lock:
            if self._schema_ready:
                return
            try:
                cursor.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self.table_name} (
                        id TEXT PRIMARY KEY,
                        section TEXT NOT NULL,
                        chunk_text TEXT NOT NULL,
                        embedding FLOAT[{self.dimension}] NOT NULL
                    )
                    """
                )
                row = cursor.execute(
                    """
                    SELECT data_type
                    FROM information_schema.columns
                    WHERE table_name = ? AND column_name = 'embedding'
                    """,
                    [self.table_name],
                ).fetchone()
            except duckdb.Error as exc:
                raise RAGStoreError(f"Schema setup failed: {exc}") from exc

            stored_type = str(row[0]) if row else ""
            match = _ARRAY_DIM.search(stored_type)
            stored_dim = int(match.group(1)) if match else -1
            if stored_dim != self.dimension:
                # Re-embedding is an offline job; never pad or truncate in place.
                raise DimensionMismatchError(
                    expected=self.dimension,
                    actual=stored_dim,
                    what=f"stored column {self.table_name}.embedding ({stored_type})",
                )
            self._schema_ready = True

    async def aclose(self) -> None:
        await asyncio.to_thread(self.pool.close)


# In-process backend


class _InMemorySession(StoreSession):
    def __init__(self, store: "InMemoryVectorStore") -> None:
        self._store = store

    async def upsert(self, passages: Sequence[Passage]) -> None:
        # Validate the whole batch before touching the table.
        for passage in passages:
            ensure_dimension(passage.vector, self._store.dimension, what=f"passage {passage.id!r}")
        for passage in _dedupe_last_write_wins(passages):
            self._store.passages[passage.id] = passage

    async def query(self, vector: Sequence[float], k: int) -> List[RetrievedChunk]:
        _validate_k(k)
        ensure_dimension(vector, self._store.dimension, what="query vector")
        try:
            scored = [
                (cosine_distance(vector, passage.vector), passage)
                for passage in self._store.passages.values()
            ]
        except ValueError as exc:
            raise RAGStoreError(f"Similarity query failed: {exc}") from exc

        scored.sort(key=lambda item: (item[0], item[1].id))
        return [
            RetrievedChunk(
                id=passage.id,
                section=passage.section,
                text=passage.text,
                distance=distance,
                rank=rank,
            )
            for rank, (distance, passage) in enumerate(scored[:k], start=1)
        ]

    async def count(self) -> int:
        return len(self._store.passages)


class InMemoryVectorStore(VectorStore):
    """
    Process-local store ranking with an exhaustive cosine scan.

    Used by the "local_file" backend (seed file loaded into memory, no
    database) and as a drop-in store in tests.
    """

    def __init__(self, dimension: int) -> None:
        super().__init__(dimension)
        self.passages: Dict[str, Passage] = {}
        self.acquired = 0
        self.released = 0

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[StoreSession]:
        self.acquired += 1
        try:
            yield _InMemorySession(self)
        finally:
            self.released += 1
