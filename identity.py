"""
identity.py — bearer identities and the context that holds the current one.

Lifecycle of the shared identity:
  acquire on first need   (SessionGuard → provider.sign_in_anonymously)
  refresh on demand       (AuthContext.get_token(force_refresh=True) after a 401,
                           or automatically when the token is about to expire)
  cleared only by an explicit sign_out()

The identity lives on an AuthContext instance that is passed to the API
client and the session guard. There is no module-level identity, so two
contexts (e.g. two test cases) never see each other's token.

FirebaseIdentityProvider talks to the Firebase Auth REST API:
  anonymous sign-up  POST identitytoolkit.googleapis.com/v1/accounts:signUp
  token refresh      POST securetoken.googleapis.com/v1/token
"""
from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Optional

import aiohttp

from errors import IdentityError, TransportFailure

logger = logging.getLogger(__name__)

SIGN_UP_URL = "https://identitytoolkit.googleapis.com/v1/accounts:signUp"
REFRESH_URL = "https://securetoken.googleapis.com/v1/token"

_TIMEOUT = aiohttp.ClientTimeout(total=10)

# Refresh this many seconds before the server-side expiry
EXPIRY_SKEW_SECS = 300


@dataclass(frozen=True)
class Identity:
    token: str
    anonymous: bool = True
    uid: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[float] = None      # unix time; None = never expires

    def expires_soon(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        return now >= self.expires_at - EXPIRY_SKEW_SECS


# ── Provider interface ────────────────────────────────────────────────────────

class IdentityProvider(ABC):
    """External collaborator that issues and refreshes bearer tokens."""

    @abstractmethod
    async def sign_in_anonymously(self) -> Identity:
        ...

    @abstractmethod
    async def refresh(self, identity: Identity) -> Identity:
        """Return a copy of `identity` with a freshly issued token (never cached)."""
        ...


class FirebaseIdentityProvider(IdentityProvider):

    def __init__(self, api_key: str) -> None:
        self._key = api_key

    async def sign_in_anonymously(self) -> Identity:
        data = await self._post(SIGN_UP_URL, json={"returnSecureToken": True})
        identity = Identity(
            token=data["idToken"],
            anonymous=True,
            uid=data.get("localId"),
            refresh_token=data.get("refreshToken"),
            expires_at=_expiry(data.get("expiresIn")),
        )
        logger.info("Signed in anonymously as %s", identity.uid)
        return identity

    async def refresh(self, identity: Identity) -> Identity:
        if not identity.refresh_token:
            raise IdentityError("identity has no refresh token")
        data = await self._post(
            REFRESH_URL,
            data={"grant_type": "refresh_token", "refresh_token": identity.refresh_token},
        )
        logger.debug("Refreshed token for %s", identity.uid)
        return replace(
            identity,
            token=data["id_token"],
            refresh_token=data.get("refresh_token", identity.refresh_token),
            uid=data.get("user_id", identity.uid),
            expires_at=_expiry(data.get("expires_in")),
        )

    # ── HTTP helper ───────────────────────────────────────────────────────────

    async def _post(self, url: str, **kwargs) -> dict:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    url,
                    params={"key": self._key},
                    timeout=_TIMEOUT,
                    **kwargs,
                ) as resp:
                    payload = await resp.json(content_type=None)
                    if resp.status != 200:
                        message = ((payload or {}).get("error") or {}).get("message")
                        raise IdentityError(
                            f"Identity provider error {resp.status}: {message or 'unknown'}"
                        )
                    return payload
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransportFailure(f"Identity provider unreachable: {exc}") from exc
        except ValueError as exc:
            raise IdentityError(f"Identity provider sent a non-JSON body: {exc}") from exc


def _expiry(expires_in: Optional[str]) -> Optional[float]:
    try:
        return time.time() + int(expires_in) if expires_in else None
    except (TypeError, ValueError):
        return None


# ── Context ───────────────────────────────────────────────────────────────────

class AuthContext:
    """Holds the current identity for one client instance."""

    def __init__(self, provider: IdentityProvider, identity: Optional[Identity] = None) -> None:
        self.provider = provider
        self._identity = identity

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    def set_identity(self, identity: Identity) -> None:
        self._identity = identity

    def sign_out(self) -> None:
        if self._identity is not None:
            logger.info("Signed out %s", self._identity.uid or "identity")
        self._identity = None

    async def get_token(self, force_refresh: bool = False) -> Optional[str]:
        """
        Current bearer token, or None when no identity exists.
        force_refresh bypasses the cached token entirely.
        """
        identity = self._identity
        if identity is None:
            return None
        if force_refresh or identity.expires_soon():
            refreshed = await self.provider.refresh(identity)
            # A sign_out() during the refresh wins
            if self._identity is identity:
                self._identity = refreshed
            return refreshed.token
        return identity.token
