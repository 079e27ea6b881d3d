import asyncio
import json

import pytest

from backend.app.core.resources import ChatResources
from backend.app.rag.index_builder import load_and_query, main
from backend.app.rag.seed import JsonSeedProvider, SeedSourceError
from backend.app.rag.store import InMemoryVectorStore
from conftest import DIM, FakeEmbedder


def _write_seed(path, records):
    path.write_text(json.dumps(records), encoding="utf-8")
    return path


SEED_RECORDS = [
    {
        "id": "exp-1",
        "section": "experience",
        "chunk_text": "Led the platform team at Acme Corp.",
        "embedding": [1.0, 0.0, 0.0, 0.0],
    },
    {
        "id": "edu-1",
        "section": "education",
        "chunk_text": "B.Sc. in Computer Engineering.",
        "embedding": [0.0, 1.0, 0.0, 0.0],
        "source": "resume.pdf",
    },
]


def test_json_seed_provider_maps_records_to_passages(tmp_path):
    path = _write_seed(tmp_path / "seed.json", SEED_RECORDS)

    passages = asyncio.run(JsonSeedProvider(path).load())

    assert [p.id for p in passages] == ["exp-1", "edu-1"]
    assert passages[0].text == "Led the platform team at Acme Corp."
    assert passages[1].section == "education"
    assert passages[1].vector == [0.0, 1.0, 0.0, 0.0]


def test_missing_seed_file_is_a_configuration_error(tmp_path):
    with pytest.raises(SeedSourceError, match="not found"):
        asyncio.run(JsonSeedProvider(tmp_path / "absent.json").load())


@pytest.mark.parametrize(
    "content",
    ["{not json", json.dumps({"id": "x"}), json.dumps([{"id": "x", "section": "s"}])],
)
def test_malformed_seed_file_is_rejected(tmp_path, content):
    path = tmp_path / "seed.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(SeedSourceError):
        asyncio.run(JsonSeedProvider(path).load())


def test_load_and_query_reapplies_seed_and_ranks(tmp_path, test_settings):
    path = _write_seed(tmp_path / "seed.json", SEED_RECORDS)
    store = InMemoryVectorStore(DIM)
    resources = ChatResources(
        test_settings,
        store=store,
        embedder=FakeEmbedder([0.1, 1.0, 0.0, 0.0]),
        seed_provider=JsonSeedProvider(path),
    )

    async def scenario():
        first = await load_and_query(resources, "Where did you study?", top_k=1)
        again = await load_and_query(resources, "Where did you study?", top_k=5)
        return first, again

    first, again = asyncio.run(scenario())

    assert [row["id"] for row in first] == ["edu-1"]
    assert first[0]["rank"] == 1
    assert [row["id"] for row in again] == ["edu-1", "exp-1"]
    assert len(store.passages) == 2


def test_cli_rejects_blank_question():
    with pytest.raises(SystemExit):
        main(["   "])
