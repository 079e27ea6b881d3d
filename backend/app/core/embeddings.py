from __future__ import annotations

from typing import List, Optional

import httpx
import openai
from openai import AsyncOpenAI

from ..observability.logging import get_logger
from ..rag.vectors import ensure_dimension
from .config import ConfigurationError, EmbeddingSettings

logger = get_logger("core.embeddings")


class EmbeddingFailure(Exception):
    """
    The embedding service could not be reached or returned a non-success response.

    `status_code` is None for transport failures; `retryable` is set for
    timeouts so the caller can decide to try again.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: str = "",
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.retryable = retryable


class EmbeddingClient:
    """
    Text -> vector through an OpenAI-compatible `/embeddings` endpoint.

    Inputs longer than `max_input_chars` are truncated (with a warning)
    rather than rejected; embedding services cap input size and the head of
    a question carries its meaning.
    """

    def __init__(
        self,
        cfg: EmbeddingSettings,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not cfg.api_key:
            raise ConfigurationError(
                "Missing embedding API key (set GEMINI_API_KEY or OPENAI_API_KEY)"
            )
        self.cfg = cfg
        # One attempt per question; the caller maps timeouts to 504.
        self._client = AsyncOpenAI(
            api_key=cfg.api_key,
            base_url=cfg.base_url,
            timeout=cfg.timeout_seconds,
            max_retries=0,
            http_client=http_client,
        )
        self._owns_client = http_client is None

    @property
    def dimension(self) -> int:
        return self.cfg.dimension

    async def embed(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")

        if len(text) > self.cfg.max_input_chars:
            logger.warning(
                "Truncating embedding input",
                extra={"chars": len(text), "max_input_chars": self.cfg.max_input_chars},
            )
            text = text[: self.cfg.max_input_chars]

        try:
            response = await self._client.embeddings.create(
                model=self.cfg.model,
                input=text,
                encoding_format="float",
            )
        except openai.APITimeoutError as exc:
            raise EmbeddingFailure(
                "Embedding request timed out", body=str(exc), retryable=True
            ) from exc
        except openai.APIStatusError as exc:
            logger.error(
                "Embedding service returned an error",
                extra={"status_code": exc.status_code, "model": self.cfg.model},
            )
            raise EmbeddingFailure(
                f"Embedding service returned status {exc.status_code}",
                status_code=exc.status_code,
                body=exc.response.text[:1000],
            ) from exc
        except openai.APIError as exc:
            raise EmbeddingFailure("Embedding request failed", body=str(exc)) from exc

        try:
            vector = [float(x) for x in response.data[0].embedding]
        except (AttributeError, IndexError, TypeError, ValueError) as exc:
            raise EmbeddingFailure(
                "Embedding service returned an unexpected payload",
                body=str(exc),
            ) from exc

        ensure_dimension(vector, self.cfg.dimension, what="embedding response")
        return vector

    async def aclose(self) -> None:
        # AsyncOpenAI.close() also closes an injected httpx client.
        if self._owns_client:
            await self._client.close()
