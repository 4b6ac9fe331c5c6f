"""Persistence layer for OAuth credentials."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from sqlalchemy.orm import Session

from ..db.db_models import CredentialModel
from ..exceptions import handle_sqlalchemy_errors
from .credential_models import ChannelInfo, Credential, TokenGrant


class CredentialRepository:
    """Manage ``oauth_credentials`` rows, one per principal."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def get(self, principal_id: str) -> Credential | None:
        """Return the stored credential or ``None`` when disconnected."""
        with self._session_factory() as session:
            model = session.get(CredentialModel, principal_id)
            if model is None or not model.access_token:
                return None
            return Credential(
                principal_id=model.principal_id,
                access_token=model.access_token,
                refresh_token=model.refresh_token,
                expires_at=model.expires_at,
                channel_id=model.channel_id,
                channel_title=model.channel_title,
            )

    def save(
        self,
        principal_id: str,
        grant: TokenGrant,
        *,
        channel: ChannelInfo | None = None,
        now: datetime | None = None,
    ) -> None:
        """Upsert tokens. An empty access token clears all token fields."""
        with handle_sqlalchemy_errors(entity="credential"), self._session_factory() as session:
            model = session.get(CredentialModel, principal_id)
            if model is None:
                model = CredentialModel(principal_id=principal_id)
                session.add(model)
            if grant.access_token:
                model.access_token = grant.access_token
                model.refresh_token = grant.refresh_token
                model.expires_at = grant.expires_at
            else:
                model.access_token = None
                model.refresh_token = None
                model.expires_at = None
            if channel is not None:
                model.channel_id = channel.channel_id
                model.channel_title = channel.channel_title
            model.updated_at = now or datetime.utcnow()
            session.commit()

    def clear(self, principal_id: str, *, now: datetime | None = None) -> None:
        self.save(
            principal_id,
            TokenGrant(access_token="", refresh_token=None, expires_at=None),
            now=now,
        )
