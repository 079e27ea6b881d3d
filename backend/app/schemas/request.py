from __future__ import annotations

from pydantic import BaseModel, Field, StrictStr, field_validator
from pydantic.config import ConfigDict


class ChatRequest(BaseModel):
    """
    Single-turn chat request. The service keeps no conversation state, so
    the message is the whole question.
    """

    model_config = ConfigDict(extra="ignore")

    message: StrictStr = Field(..., description="Free-text question from the visitor.")

    @field_validator("message")
    @classmethod
    def validate_message(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be empty")
        return value
