from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from .config import settings

# Root of the repo → prompts directory
PROMPT_ROOT = Path(__file__).resolve().parents[3] / "prompts"

ASSISTANT_PROMPT = "resume_assistant"


@lru_cache(maxsize=8)
def load_prompt(name: str, version: str) -> str:
    """
    Load a prompt template from disk.

    File layout (flat):
        prompts/{name}_{version}.md

    e.g. load_prompt("resume_assistant", "v1") -> prompts/resume_assistant_v1.md
    """
    path = PROMPT_ROOT / f"{name}_{version}.md"
    if not path.exists():
        raise FileNotFoundError(f"Prompt file not found: {path}")
    return path.read_text(encoding="utf-8")


def build_system_prompt(context: str, persona_name: str, version: str | None = None) -> str:
    """
    Render the assistant instruction: persona, grounding rules, tool policy,
    and the retrieved context block appended last.

    `version` defaults to settings.prompts.resume_assistant (RESUME_CHAT_RESUME_ASSISTANT_PROMPT_VERSION).
    """
    template = load_prompt(ASSISTANT_PROMPT, version or settings.prompts.resume_assistant)
    return template.format(persona_name=persona_name, context=context)
