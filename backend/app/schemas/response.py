from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Body of every non-streamed failure. `details` carries upstream
    diagnostics (status text, driver message) when available.
    """

    error: str
    details: Optional[str] = Field(default=None)
