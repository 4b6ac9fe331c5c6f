"""OAuth credential lifecycle per principal with proactive refresh."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from ..exceptions import ReauthorizationRequiredError, TokenRefreshError
from .credential_models import ChannelInfo, Credential, TokenGrant
from .credential_repository import CredentialRepository
from .oauth_client import GoogleOAuthClient

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.utcnow()


@dataclass(slots=True)
class TokenStore:
    """Hand out access tokens that stay valid for at least ``refresh_margin``."""

    repo: CredentialRepository
    oauth_client: GoogleOAuthClient
    refresh_margin: timedelta = timedelta(minutes=30)
    clock: Callable[[], datetime] = _utcnow
    log: logging.Logger = field(default_factory=lambda: logger)
    _locks: dict[str, asyncio.Lock] = field(default_factory=dict, init=False, repr=False)

    async def get_tokens(self, principal_id: str) -> Credential | None:
        """Return the principal's credential, refreshing it when close to expiry."""
        async with self._lock_for(principal_id):
            credential = await _run_sync(self.repo.get, principal_id)
            if credential is None:
                return None

            now = self.clock()
            if not credential.expires_within(self.refresh_margin, now):
                return credential
            if not credential.refresh_token:
                # Nothing to refresh with; the access token is used until it dies.
                return credential if not credential.is_expired(now) else None

            try:
                grant = await self.oauth_client.refresh(credential.refresh_token)
            except ReauthorizationRequiredError:
                self.log.warning(
                    "token_store.refresh.revoked",
                    extra={"principal_id": principal_id},
                )
                await _run_sync(self.repo.clear, principal_id, now=now)
                raise
            except TokenRefreshError as exc:
                if credential.is_expired(now):
                    raise
                self.log.warning(
                    "token_store.refresh.deferred",
                    extra={"principal_id": principal_id, "error": str(exc)},
                )
                return credential

            if not grant.refresh_token:
                grant.refresh_token = credential.refresh_token
            await _run_sync(self.repo.save, principal_id, grant, now=now)
            self.log.info(
                "token_store.refresh.success",
                extra={"principal_id": principal_id, "expires_at": str(grant.expires_at)},
            )
            return Credential(
                principal_id=principal_id,
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                expires_at=grant.expires_at,
                channel_id=credential.channel_id,
                channel_title=credential.channel_title,
            )

    async def has_usable_credential(self, principal_id: str) -> bool:
        """True when a refresh token exists or the access token is unexpired."""
        credential = await _run_sync(self.repo.get, principal_id)
        if credential is None:
            return False
        return credential.is_usable(self.clock())

    async def get_credential(self, principal_id: str) -> Credential | None:
        """Stored credential as is, without refreshing."""
        return await _run_sync(self.repo.get, principal_id)

    async def save_tokens(
        self,
        principal_id: str,
        grant: TokenGrant,
        channel: ChannelInfo | None = None,
    ) -> None:
        async with self._lock_for(principal_id):
            await _run_sync(self.repo.save, principal_id, grant, channel=channel, now=self.clock())

    async def disconnect(self, principal_id: str) -> None:
        async with self._lock_for(principal_id):
            await _run_sync(self.repo.clear, principal_id, now=self.clock())
        self.log.info("token_store.disconnected", extra={"principal_id": principal_id})

    def _lock_for(self, principal_id: str) -> asyncio.Lock:
        lock = self._locks.get(principal_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[principal_id] = lock
        return lock


async def _run_sync(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    return await asyncio.to_thread(func, *args, **kwargs)
