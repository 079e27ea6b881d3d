import pytest

from backend.app.core.config import ConfigurationError, GenerationSettings, Settings
from backend.app.core.prompt import build_system_prompt
from backend.app.core.resources import ChatResources
from backend.app.rag.store import DuckDBVectorStore, InMemoryVectorStore

LEGACY_VARS = (
    "GEMINI_API_KEY",
    "OPENAI_API_KEY",
    "DATABASE_URL",
    "EMBEDDING_DIM",
    "EMBEDDING_MODEL",
    "CHAT_MODEL",
    "OPENAI_BASE_URL",
    "RESUME_EMBEDDINGS_PATH",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in LEGACY_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    cfg = Settings()

    assert cfg.embedding.model == "gemini-embedding-001"
    assert cfg.embedding.dimension == 3072
    assert cfg.generation.model == "gpt-4o-mini"
    assert cfg.retrieval.top_k == 6
    assert cfg.store.backend == "duckdb"
    assert cfg.store.database_url is None
    assert cfg.embedding.api_key is None


def test_legacy_key_fallbacks_prefer_the_provider_of_each_role(clean_env):
    clean_env.setenv("GEMINI_API_KEY", "gemini-key")
    clean_env.setenv("OPENAI_API_KEY", "openai-key")

    cfg = Settings()

    assert cfg.embedding.api_key == "gemini-key"
    assert cfg.generation.api_key == "openai-key"


def test_single_key_serves_both_roles(clean_env):
    clean_env.setenv("OPENAI_API_KEY", "only-key")

    cfg = Settings()

    assert cfg.embedding.api_key == "only-key"
    assert cfg.generation.api_key == "only-key"


def test_prefixed_variables_win_over_legacy_names(clean_env):
    clean_env.setenv("DATABASE_URL", "legacy.duckdb")
    clean_env.setenv("RESUME_CHAT_DATABASE_URL", "duckdb:///data/chat.duckdb")
    clean_env.setenv("EMBEDDING_DIM", "768")
    clean_env.setenv("RESUME_CHAT_RETRIEVAL_TOP_K", "3")

    cfg = Settings()

    assert cfg.store.database_url == "duckdb:///data/chat.duckdb"
    assert cfg.embedding.dimension == 768
    assert cfg.retrieval.top_k == 3


def test_store_backend_selection(clean_env):
    local = ChatResources(Settings(store_backend="local_file", embedding_dim=4))
    duck = ChatResources(Settings(database_url=":memory:", embedding_dim=4))

    assert isinstance(local.store, InMemoryVectorStore)
    assert isinstance(duck.store, DuckDBVectorStore)
    assert duck.store.dimension == 4


def test_local_file_backend_needs_no_database_url(clean_env):
    resources = ChatResources(
        Settings(
            store_backend="local_file",
            embedding_api_key="k",
            chat_api_key="k",
        )
    )

    resources.check_configuration()


def test_duckdb_backend_requires_database_url(clean_env):
    resources = ChatResources(Settings(embedding_api_key="k", chat_api_key="k"))

    with pytest.raises(ConfigurationError, match="DATABASE_URL"):
        resources.check_configuration()


def test_generation_settings_only_carry_consumed_fields(clean_env):
    assert set(GenerationSettings.model_fields) == {
        "api_key",
        "base_url",
        "model",
        "timeout_seconds",
        "max_tool_rounds",
        "persona_name",
    }

    clean_env.setenv("RESUME_CHAT_PERSONA_NAME", "Ada Lovelace")
    resources = ChatResources(Settings())

    prompt = build_system_prompt("Chunk 1 [bio | b-1]:\nWrote the first program", resources.persona_name)
    assert "Ada Lovelace" in prompt
