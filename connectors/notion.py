"""
NotionConnector — Notion access tokens do not expire and cannot be refreshed.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

import httpx

from connectors.base import BaseConnector
from connectors.errors import ProviderError

logger = logging.getLogger(__name__)

_NOTION_API_BASE = "https://api.notion.com/v1"
_NOTION_VERSION = "2022-06-28"


class NotionConnector(BaseConnector):
    @property
    def provider_name(self) -> str:
        return "notion"

    @property
    def display_name(self) -> str:
        return "Notion"

    async def validate_token(self, access_token: str) -> bool:
        try:
            async with self._client() as client:
                resp = await client.get(
                    f"{_NOTION_API_BASE}/users/me",
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Notion-Version": _NOTION_VERSION,
                    },
                )
        except httpx.HTTPError as exc:
            logger.warning("Notion token validation request failed: %s", exc)
            return False
        return resp.is_success

    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        raise ProviderError(
            "Notion tokens do not expire and cannot be refreshed. Re-authenticate if needed."
        )
