from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from ..core.config import NotificationSettings
from ..observability.logging import get_logger

logger = get_logger("tools.notifier")


class NotificationError(Exception):
    """The push-notification sink rejected or never received a message."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class PushoverNotifier:
    """
    Sends operator notifications through a Pushover-compatible endpoint:
    POST {url} with JSON {"token", "user", "message"}.
    """

    def __init__(
        self,
        cfg: NotificationSettings,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.cfg = cfg
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(cfg.timeout_seconds)
        )
        self._owns_client = http_client is None

    async def send(self, message: str) -> Dict[str, Any]:
        if not self.cfg.pushover_token or not self.cfg.pushover_user:
            raise NotificationError("PUSHOVER_TOKEN / PUSHOVER_USER are not set")

        payload = {
            "token": self.cfg.pushover_token,
            "user": self.cfg.pushover_user,
            "message": message,
        }
        try:
            resp = await self._client.post(self.cfg.pushover_url, json=payload)
        except httpx.HTTPError as exc:
            raise NotificationError(f"Notification request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise NotificationError(
                f"Failed to send pushover message ({resp.status_code}): {resp.text[:300]}",
                status_code=resp.status_code,
                body=resp.text,
            )

        logger.info("Sent operator notification", extra={"status_code": resp.status_code})
        try:
            return resp.json()
        except ValueError:
            return {"status": resp.status_code}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
