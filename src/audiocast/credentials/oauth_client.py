"""Google OAuth2 client for the YouTube scopes."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import httpx

from ..exceptions import (
    ConfigurationError,
    OAuthExchangeError,
    ReauthorizationRequiredError,
    TokenRefreshError,
)
from .credential_models import ChannelInfo, TokenGrant

logger = logging.getLogger(__name__)

AUTH_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
CHANNELS_ENDPOINT = "https://www.googleapis.com/youtube/v3/channels"
SCOPES = (
    "https://www.googleapis.com/auth/youtube.upload",
    "https://www.googleapis.com/auth/youtube",
)
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)

_REVOKED_ERROR_CODES = {"invalid_grant", "invalid_token", "token_expired"}
_REVOKED_MESSAGES = ("expired or revoked", "invalid_grant", "invalid_token", "token_expired")

RECONNECT_MESSAGE = (
    "YouTube account connection expired. "
    "Please reconnect your YouTube account in the settings."
)


def refresh_requires_reauth(status_code: int, payload: dict[str, Any] | None, text: str = "") -> bool:
    """Tell a revoked grant apart from a transient refresh failure."""
    payload = payload or {}
    error = payload.get("error")
    if isinstance(error, dict):
        error = error.get("status") or error.get("message")
    if isinstance(error, str) and error.lower() in _REVOKED_ERROR_CODES:
        return True
    description = " ".join(
        str(part) for part in (error, payload.get("error_description"), text) if part
    ).lower()
    if any(marker in description for marker in _REVOKED_MESSAGES):
        return True
    return status_code == 401


def _utcnow() -> datetime:
    return datetime.utcnow()


@dataclass(slots=True)
class GoogleOAuthClient:
    """Authorization-code and refresh-token flows against Google."""

    client_id: str | None
    client_secret: str | None
    redirect_uri: str
    timeout_seconds: float = 30.0
    transport: httpx.AsyncBaseTransport | None = None
    clock: Callable[[], datetime] = _utcnow
    log: logging.Logger = field(default_factory=lambda: logger)

    def authorization_url(self, state: str, *, redirect_uri: str | None = None) -> str:
        client_id, _ = self._client_credentials()
        query = urlencode(
            {
                "client_id": client_id,
                "redirect_uri": redirect_uri or self.redirect_uri,
                "response_type": "code",
                "scope": " ".join(SCOPES),
                "access_type": "offline",
                "include_granted_scopes": "true",
                "prompt": "select_account consent",
                "state": state,
            }
        )
        return f"{AUTH_ENDPOINT}?{query}"

    async def exchange_code(self, code: str, *, redirect_uri: str | None = None) -> TokenGrant:
        client_id, client_secret = self._client_credentials()
        data = {
            "code": code,
            "client_id": client_id,
            "client_secret": client_secret,
            "redirect_uri": redirect_uri or self.redirect_uri,
            "grant_type": "authorization_code",
        }
        try:
            response = await self._post_form(data)
        except httpx.HTTPError as exc:
            raise OAuthExchangeError(f"Token exchange failed: {exc}") from exc

        payload = _json_or_none(response)
        if response.status_code != 200:
            if (payload or {}).get("error") == "invalid_grant":
                raise OAuthExchangeError(
                    "Authorization code expired or already used. Please try connecting again."
                )
            raise OAuthExchangeError(
                f"Token exchange failed with status {response.status_code}: {_error_text(payload, response)}"
            )
        if not payload or not payload.get("access_token"):
            raise OAuthExchangeError("Token exchange returned no access token")
        self.log.info("oauth.exchange.success")
        return self._grant_from_payload(payload, fallback_refresh=None)

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access token.

        Raises :class:`ReauthorizationRequiredError` when Google says the grant
        is gone and :class:`TokenRefreshError` for anything that may heal.
        """
        client_id, client_secret = self._client_credentials()
        data = {
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        try:
            response = await self._post_form(data)
        except httpx.HTTPError as exc:
            raise TokenRefreshError(f"Token refresh failed: {exc}") from exc

        payload = _json_or_none(response)
        if response.status_code != 200:
            if response.status_code in (400, 401) and refresh_requires_reauth(
                response.status_code, payload, response.text
            ):
                raise ReauthorizationRequiredError(RECONNECT_MESSAGE)
            raise TokenRefreshError(
                f"Token refresh failed with status {response.status_code}: {_error_text(payload, response)}"
            )
        if not payload or not payload.get("access_token"):
            raise TokenRefreshError("Token refresh returned no access token")
        return self._grant_from_payload(payload, fallback_refresh=refresh_token)

    async def fetch_channel(self, access_token: str) -> ChannelInfo | None:
        """Return the authorized channel, or ``None`` when it cannot be read."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.get(
                    CHANNELS_ENDPOINT,
                    params={"part": "snippet", "mine": "true"},
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as exc:
            self.log.warning("oauth.channel.lookup_failed", extra={"error": str(exc)})
            return None
        if response.status_code != 200:
            self.log.warning(
                "oauth.channel.lookup_failed",
                extra={"status_code": response.status_code},
            )
            return None
        items = (_json_or_none(response) or {}).get("items") or []
        if not items:
            return None
        first = items[0]
        return ChannelInfo(
            channel_id=first.get("id", ""),
            channel_title=(first.get("snippet") or {}).get("title"),
        )

    def _client_credentials(self) -> tuple[str, str]:
        if not self.client_id or not self.client_secret:
            raise ConfigurationError("Google OAuth client credentials are not configured")
        return self.client_id, self.client_secret

    async def _post_form(self, data: dict[str, str]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            return await client.post(TOKEN_ENDPOINT, data=data)

    def _grant_from_payload(self, payload: dict[str, Any], *, fallback_refresh: str | None) -> TokenGrant:
        expires_in = payload.get("expires_in")
        lifetime = timedelta(seconds=int(expires_in)) if expires_in else DEFAULT_TOKEN_LIFETIME
        return TokenGrant(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or fallback_refresh,
            expires_at=self.clock() + lifetime,
        )


def _json_or_none(response: httpx.Response) -> dict[str, Any] | None:
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _error_text(payload: dict[str, Any] | None, response: httpx.Response) -> str:
    if payload:
        description = payload.get("error_description") or payload.get("error")
        if description:
            return str(description)
    return response.text[:200]
