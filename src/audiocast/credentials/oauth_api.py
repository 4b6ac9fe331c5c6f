"""HTTP routes for connecting a YouTube account."""

from __future__ import annotations

import logging
import secrets

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field

from ..exceptions import AppError, InvalidRequestError, OAuthExchangeError
from ..security.rate_limit import rate_limited
from ..uploads.upload_api import to_http_exception
from .oauth_client import GoogleOAuthClient
from .token_store import TokenStore

router = APIRouter(
    prefix="/api/youtube/oauth",
    tags=["youtube-oauth"],
    dependencies=[Depends(rate_limited("general", "youtube"))],
)
logger = logging.getLogger(__name__)


class AuthorizeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    redirect_uri: str | None = Field(default=None, alias="redirectUri")


class CallbackRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    code: str
    redirect_uri: str | None = Field(default=None, alias="redirectUri")
    state: str | None = None


class DisconnectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")


def get_token_store(request: Request) -> TokenStore:
    return request.app.state.token_store  # type: ignore[attr-defined]


def get_oauth_client(request: Request) -> GoogleOAuthClient:
    return request.app.state.oauth_client  # type: ignore[attr-defined]


@router.post("/authorize")
def authorize(
    payload: AuthorizeRequest,
    client: GoogleOAuthClient = Depends(get_oauth_client),
) -> dict:
    state = f"{payload.user_id}:{secrets.token_urlsafe(16)}"
    try:
        url = client.authorization_url(state, redirect_uri=payload.redirect_uri)
    except AppError as exc:
        raise to_http_exception(exc) from exc
    return {"status": "ok", "authUrl": url, "state": state}


@router.post("/callback")
async def callback(
    payload: CallbackRequest,
    client: GoogleOAuthClient = Depends(get_oauth_client),
    store: TokenStore = Depends(get_token_store),
) -> dict:
    if payload.state and not payload.state.startswith(f"{payload.user_id}:"):
        raise to_http_exception(InvalidRequestError("OAuth state does not match user"))
    try:
        grant = await client.exchange_code(payload.code, redirect_uri=payload.redirect_uri)
    except OAuthExchangeError as exc:
        logger.warning("oauth.callback.exchange_failed", extra={"user_id": payload.user_id})
        raise to_http_exception(InvalidRequestError(str(exc))) from exc
    except AppError as exc:
        raise to_http_exception(exc) from exc

    channel = await client.fetch_channel(grant.access_token)
    await store.save_tokens(payload.user_id, grant, channel)
    logger.info("oauth.callback.connected", extra={"user_id": payload.user_id})
    return {
        "status": "ok",
        "connected": True,
        "channel": (
            {"id": channel.channel_id, "title": channel.channel_title} if channel else None
        ),
    }


@router.get("/status")
async def connection_status(
    user_id: str = Query(..., alias="userId"),
    store: TokenStore = Depends(get_token_store),
) -> dict:
    connected = await store.has_usable_credential(user_id)
    credential = await store.get_credential(user_id) if connected else None
    return {
        "status": "ok",
        "connected": connected,
        "channel": (
            {"id": credential.channel_id, "title": credential.channel_title}
            if credential is not None and credential.channel_id
            else None
        ),
    }


@router.post("/disconnect", status_code=status.HTTP_200_OK)
async def disconnect(
    payload: DisconnectRequest,
    store: TokenStore = Depends(get_token_store),
) -> dict:
    await store.disconnect(payload.user_id)
    return {"status": "ok", "connected": False}
