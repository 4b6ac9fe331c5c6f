from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.audiocast.credentials.credential_models import ChannelInfo, TokenGrant
from src.audiocast.credentials.oauth_api import router
from src.audiocast.exceptions import OAuthExchangeError
from tests.mocks.pipeline_fakes import make_credential


class StubOAuthClient:
    def __init__(self, *, exchange_error: Exception | None = None) -> None:
        self.exchange_error = exchange_error

    def authorization_url(self, state, redirect_uri=None):
        return f"https://accounts.test/auth?state={state}"

    async def exchange_code(self, code, redirect_uri=None):
        if self.exchange_error is not None:
            raise self.exchange_error
        return TokenGrant(access_token="access", refresh_token="refresh", expires_at=None)

    async def fetch_channel(self, access_token):
        return ChannelInfo(channel_id="UC123", channel_title="Beats")


class StubTokenStore:
    def __init__(self) -> None:
        self.saved: list[tuple] = []
        self.disconnected: list[str] = []

    async def save_tokens(self, principal_id, grant, channel=None):
        self.saved.append((principal_id, grant, channel))

    async def has_usable_credential(self, principal_id):
        return principal_id == "user-1"

    async def get_credential(self, principal_id):
        credential = make_credential(principal_id)
        credential.channel_id = "UC123"
        credential.channel_title = "Beats"
        return credential

    async def disconnect(self, principal_id):
        self.disconnected.append(principal_id)


def build_client(client: StubOAuthClient, store: StubTokenStore) -> TestClient:
    app = FastAPI()
    app.state.oauth_client = client
    app.state.token_store = store
    app.include_router(router)
    return TestClient(app)


def test_authorize_binds_state_to_user() -> None:
    client = build_client(StubOAuthClient(), StubTokenStore())

    body = client.post("/api/youtube/oauth/authorize", json={"userId": "user-1"}).json()

    assert body["state"].startswith("user-1:")
    assert body["authUrl"].endswith(body["state"])


def test_callback_saves_grant_and_channel() -> None:
    store = StubTokenStore()
    client = build_client(StubOAuthClient(), store)

    response = client.post(
        "/api/youtube/oauth/callback",
        json={"userId": "user-1", "code": "abc", "state": "user-1:xyz"},
    )

    assert response.json()["channel"] == {"id": "UC123", "title": "Beats"}
    principal_id, grant, channel = store.saved[0]
    assert principal_id == "user-1"
    assert grant.refresh_token == "refresh"
    assert channel.channel_title == "Beats"


def test_callback_rejects_foreign_state_and_reused_code() -> None:
    store = StubTokenStore()
    mismatch = build_client(StubOAuthClient(), store).post(
        "/api/youtube/oauth/callback",
        json={"userId": "user-1", "code": "abc", "state": "user-2:xyz"},
    )
    reused = build_client(
        StubOAuthClient(exchange_error=OAuthExchangeError("Authorization code already used")),
        store,
    ).post("/api/youtube/oauth/callback", json={"userId": "user-1", "code": "abc"})

    assert mismatch.status_code == 400
    assert reused.status_code == 400
    assert "already used" in reused.json()["detail"]["message"]
    assert store.saved == []


def test_status_and_disconnect() -> None:
    store = StubTokenStore()
    client = build_client(StubOAuthClient(), store)

    connected = client.get("/api/youtube/oauth/status", params={"userId": "user-1"}).json()
    other = client.get("/api/youtube/oauth/status", params={"userId": "user-9"}).json()
    client.post("/api/youtube/oauth/disconnect", json={"userId": "user-1"})

    assert connected["connected"] is True
    assert connected["channel"]["id"] == "UC123"
    assert other == {"status": "ok", "connected": False, "channel": None}
    assert store.disconnected == ["user-1"]
