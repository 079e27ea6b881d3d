from __future__ import annotations

from fastapi import Request

from ..core.resources import ChatResources


def get_resources(request: Request) -> ChatResources:
    """Process-wide resources owned by the application (see main.create_app)."""
    return request.app.state.resources
