"""
Tests for identity.py.

Covers:
  - Identity.expires_soon(): skew window
  - AuthContext.get_token(): cached, forced refresh, auto refresh near expiry,
    sign_out()
  - FirebaseIdentityProvider: sign-up / refresh payload mapping, error bodies,
    connection errors
"""
from __future__ import annotations

import time
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from conftest import FakeIdentityProvider
from errors import IdentityError, TransportFailure
from identity import (
    EXPIRY_SKEW_SECS, REFRESH_URL, SIGN_UP_URL,
    AuthContext, FirebaseIdentityProvider, Identity,
)


# ── Identity ───────────────────────────────────────────────────────────────────

class TestIdentity:
    def test_no_expiry_never_expires(self):
        assert Identity(token="t").expires_soon() is False

    def test_inside_skew_window(self):
        now = 1_000_000.0
        identity = Identity(token="t", expires_at=now + EXPIRY_SKEW_SECS - 1)
        assert identity.expires_soon(now) is True

    def test_outside_skew_window(self):
        now = 1_000_000.0
        identity = Identity(token="t", expires_at=now + EXPIRY_SKEW_SECS + 60)
        assert identity.expires_soon(now) is False


# ── AuthContext ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestAuthContext:
    async def test_no_identity_gives_no_token(self, auth, provider):
        assert await auth.get_token() is None
        assert await auth.get_token(force_refresh=True) is None
        assert provider.refresh_calls == 0

    async def test_cached_token(self, signed_in_auth, provider):
        assert await signed_in_auth.get_token() == "tok-0"
        assert provider.refresh_calls == 0

    async def test_forced_refresh_bypasses_cache(self, signed_in_auth, provider):
        assert await signed_in_auth.get_token(force_refresh=True) == "tok-1"
        assert signed_in_auth.identity.token == "tok-1"
        assert await signed_in_auth.get_token() == "tok-1"
        assert provider.refresh_calls == 1

    async def test_expiring_token_refreshed_automatically(self, provider):
        stale = Identity(token="old", expires_at=time.time() + 10)
        auth = AuthContext(provider, stale)
        assert await auth.get_token() == "tok-1"
        assert provider.refresh_calls == 1

    async def test_sign_out_clears_identity(self, signed_in_auth):
        signed_in_auth.sign_out()
        assert signed_in_auth.identity is None
        assert await signed_in_auth.get_token() is None

    async def test_contexts_are_independent(self):
        a = AuthContext(FakeIdentityProvider(), Identity(token="a"))
        b = AuthContext(FakeIdentityProvider())
        assert await a.get_token() == "a"
        assert await b.get_token() is None


# ── FirebaseIdentityProvider ───────────────────────────────────────────────────

def _firebase_session(status: int, payload):
    mock_resp = MagicMock()
    mock_resp.status = status
    mock_resp.json = AsyncMock(return_value=payload)
    mock_resp.__aenter__ = AsyncMock(return_value=mock_resp)
    mock_resp.__aexit__ = AsyncMock(return_value=False)

    mock_session = MagicMock()
    mock_session.post = MagicMock(return_value=mock_resp)
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=False)
    return mock_session


@pytest.mark.asyncio
class TestFirebaseProvider:
    async def test_sign_in_anonymously(self):
        session = _firebase_session(200, {
            "idToken": "id-123", "refreshToken": "r-1", "expiresIn": "3600", "localId": "uid-9",
        })
        with patch("identity.aiohttp.ClientSession", return_value=session):
            identity = await FirebaseIdentityProvider("web-key").sign_in_anonymously()

        assert identity.token == "id-123"
        assert identity.anonymous is True
        assert identity.uid == "uid-9"
        assert identity.refresh_token == "r-1"
        assert identity.expires_at > time.time() + 3000
        args, kwargs = session.post.call_args
        assert args == (SIGN_UP_URL,)
        assert kwargs["params"] == {"key": "web-key"}
        assert kwargs["json"] == {"returnSecureToken": True}

    async def test_refresh(self):
        session = _firebase_session(200, {
            "id_token": "id-456", "refresh_token": "r-2", "expires_in": "3600", "user_id": "uid-9",
        })
        old = Identity(token="id-123", uid="uid-9", refresh_token="r-1")
        with patch("identity.aiohttp.ClientSession", return_value=session):
            identity = await FirebaseIdentityProvider("web-key").refresh(old)

        assert identity.token == "id-456"
        assert identity.refresh_token == "r-2"
        args, kwargs = session.post.call_args
        assert args == (REFRESH_URL,)
        assert kwargs["data"] == {"grant_type": "refresh_token", "refresh_token": "r-1"}

    async def test_refresh_without_refresh_token(self):
        with pytest.raises(IdentityError):
            await FirebaseIdentityProvider("web-key").refresh(Identity(token="t"))

    async def test_error_body_raises_identity_error(self):
        session = _firebase_session(400, {"error": {"message": "ADMIN_ONLY_OPERATION"}})
        with patch("identity.aiohttp.ClientSession", return_value=session):
            with pytest.raises(IdentityError, match="ADMIN_ONLY_OPERATION"):
                await FirebaseIdentityProvider("web-key").sign_in_anonymously()

    async def test_connection_error_is_transport_failure(self):
        session = _firebase_session(200, {})
        session.post = MagicMock(side_effect=aiohttp.ClientConnectionError("dns"))
        with patch("identity.aiohttp.ClientSession", return_value=session):
            with pytest.raises(TransportFailure):
                await FirebaseIdentityProvider("web-key").sign_in_anonymously()
