from __future__ import annotations

from enum import Enum
from functools import lru_cache
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class ConfigurationError(Exception):
    """Raised when required configuration is missing or inconsistent."""


class AppEnv(str, Enum):
    LOCAL = "local"
    DEV = "dev"
    PROD = "prod"


class AppSettings(BaseModel):
    name: str = Field(default="Resume Chat Assistant")
    env: AppEnv = Field(default=AppEnv.DEV)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO"
    )

    @field_validator("port")
    @classmethod
    def validate_port(cls, value: int) -> int:
        if not (1 <= value <= 65535):
            raise ValueError("APP_PORT must be between 1 and 65535")
        return value


class OTELSettings(BaseModel):
    enabled: bool = True
    service_name: str = Field(default="resume-chat-api")
    exporter_otlp_endpoint: str = Field(default="http://alloy:4317")
    exporter_otlp_protocol: Literal["grpc", "http/protobuf", "http/json"] = Field(
        default="grpc"
    )


class EmbeddingSettings(BaseModel):
    """
    OpenAI-compatible embeddings endpoint.

    The default points at Gemini's OpenAI compatibility layer, whose
    gemini-embedding-001 model returns 3072-dimensional vectors.
    """

    api_key: Optional[str] = None
    base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/openai"
    )
    model: str = Field(default="gemini-embedding-001")
    dimension: int = Field(default=3072)
    max_input_chars: int = Field(default=8000)
    timeout_seconds: float = Field(default=30.0)

    @field_validator("dimension", "max_input_chars")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be a positive integer")
        return value


class GenerationSettings(BaseModel):
    api_key: Optional[str] = None
    base_url: str = Field(default="https://api.openai.com/v1")
    model: str = Field(default="gpt-4o-mini")
    timeout_seconds: float = Field(default=120.0)
    max_tool_rounds: int = Field(default=4)
    persona_name: str = Field(default="the site owner")


class StoreSettings(BaseModel):
    """
    Similarity store connection.

    database_url is a DuckDB DSN like:
      duckdb:///app_storage/resume_chat.duckdb
    The "local_file" backend keeps the seed passages in process memory and
    needs no database at all.
    """

    backend: Literal["duckdb", "local_file"] = Field(default="duckdb")
    database_url: Optional[str] = None
    table_name: str = Field(default="rag_embeddings")
    pool_size: int = Field(default=8)


class RetrievalSettings(BaseModel):
    top_k: int = Field(default=6)
    seed_path: str = Field(default="data/resumeEmbeddings.json")

    @field_validator("top_k")
    @classmethod
    def validate_top_k(cls, value: int) -> int:
        if value < 1:
            raise ValueError("top_k must be a positive integer")
        return value


class NotificationSettings(BaseModel):
    pushover_url: str = Field(default="https://api.pushover.net/1/messages.json")
    pushover_token: Optional[str] = None
    pushover_user: Optional[str] = None
    timeout_seconds: float = Field(default=10.0)


class PromptVersionSettings(BaseModel):
    resume_assistant: str = Field(default="v1")


class Settings(BaseSettings):
    """
    Top-level application settings loaded from environment.

    Priority:
      1. RESUME_CHAT_* variables (namespaced)
      2. Legacy unprefixed names (OPENAI_API_KEY, DATABASE_URL, APP_*, OTEL_*, ...)
    """

    # App
    app_name: Optional[str] = None
    app_env: Optional[str] = None
    app_host: Optional[str] = None
    app_port: Optional[int] = None
    log_level: Optional[str] = None

    # OTEL
    otel_enabled: Optional[bool] = None
    otel_service_name: Optional[str] = None
    otel_exporter_otlp_endpoint: Optional[str] = None
    otel_exporter_otlp_protocol: Optional[str] = None

    # Embeddings
    embedding_api_key: Optional[str] = None
    embedding_base_url: Optional[str] = None
    embedding_model: Optional[str] = None
    embedding_dim: Optional[int] = None
    embedding_max_input_chars: Optional[int] = None
    embedding_timeout_seconds: Optional[float] = None

    # Generation
    chat_api_key: Optional[str] = None
    chat_base_url: Optional[str] = None
    chat_model: Optional[str] = None
    chat_timeout_seconds: Optional[float] = None
    chat_max_tool_rounds: Optional[int] = None
    persona_name: Optional[str] = None

    # Store
    store_backend: Optional[str] = None
    database_url: Optional[str] = None
    store_table_name: Optional[str] = None
    store_pool_size: Optional[int] = None

    # Retrieval
    retrieval_top_k: Optional[int] = None
    seed_path: Optional[str] = None

    # Notifications
    pushover_url: Optional[str] = None
    pushover_token: Optional[str] = None
    pushover_user: Optional[str] = None

    # Prompts
    resume_assistant_prompt_version: Optional[str] = None

    class Config:
        env_prefix = "RESUME_CHAT_"
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def app(self) -> AppSettings:
        name = self.app_name or self._get_legacy("APP_NAME") or AppSettings().name
        env_str = self.app_env or self._get_legacy("APP_ENV") or AppSettings().env
        host = self.app_host or self._get_legacy("APP_HOST") or AppSettings().host
        port = self.app_port or int(self._get_legacy("APP_PORT", "8000"))
        log_level = (
            self.log_level or self._get_legacy("LOG_LEVEL") or AppSettings().log_level
        )

        return AppSettings(
            name=name,
            env=AppEnv(env_str),
            host=host,
            port=port,
            log_level=log_level.upper(),  # validated by AppSettings
        )

    @property
    def otel(self) -> OTELSettings:
        enabled = self.otel_enabled
        if enabled is None:
            enabled = self._parse_bool(self._get_legacy("OTEL_ENABLED", "true"))
        service_name = (
            self.otel_service_name
            or self._get_legacy("OTEL_SERVICE_NAME")
            or OTELSettings().service_name
        )
        endpoint = (
            self.otel_exporter_otlp_endpoint
            or self._get_legacy("OTEL_EXPORTER_OTLP_ENDPOINT")
            or OTELSettings().exporter_otlp_endpoint
        )
        protocol = (
            self.otel_exporter_otlp_protocol
            or self._get_legacy("OTEL_EXPORTER_OTLP_PROTOCOL")
            or OTELSettings().exporter_otlp_protocol
        )

        return OTELSettings(
            enabled=enabled,
            service_name=service_name,
            exporter_otlp_endpoint=endpoint,
            exporter_otlp_protocol=protocol,
        )

    @property
    def embedding(self) -> EmbeddingSettings:
        defaults = EmbeddingSettings()
        dimension = self.embedding_dim or int(
            self._get_legacy("EMBEDDING_DIM", str(defaults.dimension))
        )
        return EmbeddingSettings(
            api_key=self.embedding_api_key
            or self._get_legacy("GEMINI_API_KEY")
            or self._get_legacy("OPENAI_API_KEY"),
            base_url=self.embedding_base_url
            or self._get_legacy("EMBEDDINGS_BASE_URL")
            or self._get_legacy("GEMINI_BASE_URL")
            or defaults.base_url,
            model=self.embedding_model
            or self._get_legacy("EMBEDDING_MODEL")
            or defaults.model,
            dimension=dimension,
            max_input_chars=self.embedding_max_input_chars or defaults.max_input_chars,
            timeout_seconds=self.embedding_timeout_seconds or defaults.timeout_seconds,
        )

    @property
    def generation(self) -> GenerationSettings:
        defaults = GenerationSettings()
        return GenerationSettings(
            api_key=self.chat_api_key
            or self._get_legacy("OPENAI_API_KEY")
            or self._get_legacy("GEMINI_API_KEY"),
            base_url=self.chat_base_url
            or self._get_legacy("OPENAI_BASE_URL")
            or defaults.base_url,
            model=self.chat_model or self._get_legacy("CHAT_MODEL") or defaults.model,
            timeout_seconds=self.chat_timeout_seconds or defaults.timeout_seconds,
            max_tool_rounds=self.chat_max_tool_rounds or defaults.max_tool_rounds,
            persona_name=self.persona_name or defaults.persona_name,
        )

    @property
    def store(self) -> StoreSettings:
        defaults = StoreSettings()
        return StoreSettings(
            backend=self.store_backend or defaults.backend,
            database_url=self.database_url or self._get_legacy("DATABASE_URL"),
            table_name=self.store_table_name or defaults.table_name,
            pool_size=self.store_pool_size or defaults.pool_size,
        )

    @property
    def retrieval(self) -> RetrievalSettings:
        return RetrievalSettings(
            top_k=self.retrieval_top_k or RetrievalSettings().top_k,
            seed_path=self.seed_path
            or self._get_legacy("RESUME_EMBEDDINGS_PATH")
            or RetrievalSettings().seed_path,
        )

    @property
    def notification(self) -> NotificationSettings:
        return NotificationSettings(
            pushover_url=self.pushover_url
            or self._get_legacy("PUSHOVER_URL")
            or NotificationSettings().pushover_url,
            pushover_token=self.pushover_token or self._get_legacy("PUSHOVER_TOKEN"),
            pushover_user=self.pushover_user or self._get_legacy("PUSHOVER_USER"),
        )

    @property
    def prompts(self) -> PromptVersionSettings:
        return PromptVersionSettings(
            resume_assistant=self.resume_assistant_prompt_version
            or PromptVersionSettings().resume_assistant,
        )

    # Helpers

    @staticmethod
    def _get_legacy(name: str, default: Optional[str] = None) -> Optional[str]:
        """Read legacy env vars (OPENAI_API_KEY, DATABASE_URL, APP_*, OTEL_*) directly."""
        import os

        return os.getenv(name, default) or default

    @staticmethod
    def _parse_bool(raw: Optional[str]) -> bool:
        return str(raw).strip().lower() in ("1", "true", "yes", "on")


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings instance to avoid re-parsing env on every import.

    Usage:
        from backend.app.core.config import get_settings
        settings = get_settings()
        settings.embedding.model, settings.retrieval.top_k, ...
    """
    return Settings()


settings = get_settings()
