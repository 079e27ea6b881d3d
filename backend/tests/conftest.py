import json
import os
from typing import Any, Callable, Dict, List, Optional, Sequence

# Must be set before backend.app modules read settings.
os.environ.setdefault("RESUME_CHAT_OTEL_ENABLED", "false")

import httpx
import pytest

from backend.app.core.config import Settings
from backend.app.schemas.rag import Passage

DIM = 4


def sse_body(*frames: Any, done: bool = True) -> bytes:
    """Encode frames as an event stream; str frames are sent verbatim."""
    parts: List[str] = []
    for frame in frames:
        data = frame if isinstance(frame, str) else json.dumps(frame)
        parts.append(f"data: {data}\n\n")
    if done:
        parts.append("data: [DONE]\n\n")
    return "".join(parts).encode("utf-8")


def text_chunk(content: str, finish_reason: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion.chunk",
        "choices": [
            {"index": 0, "delta": {"content": content}, "finish_reason": finish_reason}
        ],
    }


def tool_call_chunk(
    name: str,
    arguments: str,
    call_id: str = "call_1",
    index: int = 0,
) -> Dict[str, Any]:
    return {
        "choices": [
            {
                "index": 0,
                "delta": {
                    "tool_calls": [
                        {
                            "index": index,
                            "id": call_id,
                            "type": "function",
                            "function": {"name": name, "arguments": arguments},
                        }
                    ]
                },
                "finish_reason": None,
            }
        ]
    }


def finish_chunk(reason: str) -> Dict[str, Any]:
    return {"choices": [{"index": 0, "delta": {}, "finish_reason": reason}]}


class RecordingTransport:
    """httpx transport that records requests and replays canned responses in order."""

    def __init__(self, responses: Sequence[Callable[[httpx.Request], httpx.Response]]) -> None:
        self._responses = list(responses)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self._responses:
            raise AssertionError(f"Unexpected request to {request.url}")
        return self._responses.pop(0)(request)

    def json_bodies(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def stream_response(body: bytes, status_code: int = 200):
    return lambda request: httpx.Response(
        status_code,
        content=body,
        headers={"content-type": "text/event-stream"},
    )


class FakeEmbedder:
    """Returns canned vectors keyed by text, or a default."""

    def __init__(self, default: Sequence[float], by_text: Optional[Dict[str, Sequence[float]]] = None) -> None:
        self.default = list(default)
        self.by_text = {k: list(v) for k, v in (by_text or {}).items()}
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        return self.by_text.get(text, self.default)

    async def aclose(self) -> None:
        return None


def make_passage(pid: str, vector: Sequence[float], section: str = "experience", text: Optional[str] = None) -> Passage:
    return Passage(id=pid, section=section, text=text or f"text for {pid}", vector=list(vector))


@pytest.fixture
def resume_passages() -> List[Passage]:
    return [
        make_passage(
            "exp-1",
            [0.9, 0.1, 0.0, 0.0],
            section="experience",
            text="Worked at Acme Corp and Globex as a software development lead.",
        ),
        make_passage(
            "edu-1",
            [0.0, 1.0, 0.0, 0.0],
            section="education",
            text="B.Sc. in Computer Engineering.",
        ),
        make_passage(
            "skills-1",
            [0.0, 0.0, 1.0, 0.2],
            section="skills",
            text="Python, TypeScript, PostgreSQL.",
        ),
    ]


@pytest.fixture
def test_settings(monkeypatch) -> Settings:
    for name in (
        "GEMINI_API_KEY",
        "OPENAI_API_KEY",
        "DATABASE_URL",
        "EMBEDDING_DIM",
        "PUSHOVER_TOKEN",
        "PUSHOVER_USER",
    ):
        monkeypatch.delenv(name, raising=False)
    return Settings(
        embedding_api_key="embed-key",
        embedding_dim=DIM,
        chat_api_key="chat-key",
        chat_base_url="https://llm.test/v1",
        database_url=":memory:",
        persona_name="Test Person",
    )
