"""
Google connectors — token refresh and validation for Google app providers.

Gmail, Google Drive and Google Calendar share Google's OAuth2 token
endpoints and differ only in identity and scopes.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from connectors.base import BaseConnector
from connectors.errors import ProviderError
from connectors.vault import CredentialVault

logger = logging.getLogger(__name__)

# Google OAuth2 endpoints
_GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
_GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"


class GoogleConnector(BaseConnector):
    """Shared OAuth2 token handling for Google providers."""

    def __init__(
        self,
        vault: CredentialVault,
        *,
        client_id: str = "",
        client_secret: str = "",
        http_timeout: Optional[float] = None,
    ) -> None:
        super().__init__(vault, http_timeout=http_timeout)
        self._client_id = client_id
        self._client_secret = client_secret

    def is_configured(self) -> bool:
        return bool(self._client_id and self._client_secret)

    async def validate_token(self, access_token: str) -> bool:
        """Tokeninfo answers 200 for live tokens and 400 for revoked/expired ones."""
        try:
            async with self._client() as client:
                resp = await client.get(_GOOGLE_TOKENINFO_URL, params={"access_token": access_token})
        except httpx.HTTPError as exc:
            logger.warning("%s token validation request failed: %s", self.provider_name, exc)
            return False
        return resp.status_code == 200

    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        """Use refresh token to get a new access token."""
        try:
            async with self._client() as client:
                resp = await client.post(
                    _GOOGLE_TOKEN_URL,
                    data={
                        "client_id": self._client_id,
                        "client_secret": self._client_secret,
                        "refresh_token": refresh_token,
                        "grant_type": "refresh_token",
                    },
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.display_name} token refresh failed: {exc}") from exc

        return {
            "access_token": data["access_token"],
            "expires_in": data.get("expires_in"),
            "refresh_token": data.get("refresh_token"),
        }


class GmailConnector(GoogleConnector):
    @property
    def provider_name(self) -> str:
        return "gmail"

    @property
    def display_name(self) -> str:
        return "Gmail"

    @property
    def scopes(self) -> List[str]:
        return [
            "https://www.googleapis.com/auth/userinfo.email",
            "https://www.googleapis.com/auth/userinfo.profile",
            "https://www.googleapis.com/auth/gmail.readonly",
            "https://www.googleapis.com/auth/gmail.compose",
        ]


class GoogleDriveConnector(GoogleConnector):
    @property
    def provider_name(self) -> str:
        return "google-drive"

    @property
    def display_name(self) -> str:
        return "Google Drive"

    @property
    def scopes(self) -> List[str]:
        return ["https://www.googleapis.com/auth/drive.readonly"]


class GoogleCalendarConnector(GoogleConnector):
    @property
    def provider_name(self) -> str:
        return "google-calendar"

    @property
    def display_name(self) -> str:
        return "Google Calendar"

    @property
    def scopes(self) -> List[str]:
        return ["https://www.googleapis.com/auth/calendar.readonly"]
