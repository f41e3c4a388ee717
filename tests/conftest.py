"""
Shared pytest fixtures.

Every test gets its own AuthContext backed by a FakeIdentityProvider, so no
identity or token leaks between tests, and a predictable API base URL.
"""
from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# ── Make the project root importable without installing the package ────────────
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from identity import AuthContext, Identity, IdentityProvider  # noqa: E402

BASE_URL = "https://appraise.test"


class FakeIdentityProvider(IdentityProvider):
    """Counts calls; tokens are tok-1, tok-2, … in issue order."""

    def __init__(self, fail_sign_in: Exception | None = None) -> None:
        self.sign_in_calls = 0
        self.refresh_calls = 0
        self._issued = 0
        self._fail_sign_in = fail_sign_in

    def _next_token(self) -> str:
        self._issued += 1
        return f"tok-{self._issued}"

    async def sign_in_anonymously(self) -> Identity:
        self.sign_in_calls += 1
        if self._fail_sign_in is not None:
            raise self._fail_sign_in
        return Identity(token=self._next_token(), anonymous=True, uid="anon-1")

    async def refresh(self, identity: Identity) -> Identity:
        self.refresh_calls += 1
        return Identity(token=self._next_token(), anonymous=identity.anonymous, uid=identity.uid)


@pytest.fixture(autouse=True)
def base_url(monkeypatch):
    import config
    monkeypatch.setattr(config, "API_BASE_URL", BASE_URL)
    monkeypatch.setattr(config, "REQUEST_TIMEOUT_SECS", None)
    return BASE_URL


@pytest.fixture
def provider():
    return FakeIdentityProvider()


@pytest.fixture
def auth(provider):
    """Context with no identity yet."""
    return AuthContext(provider)


@pytest.fixture
def signed_in_auth(provider):
    """Context that already holds tok-0."""
    return AuthContext(provider, Identity(token="tok-0", anonymous=True, uid="anon-1"))


# ── aiohttp mocks ──────────────────────────────────────────────────────────────

def fake_response(status: int = 200, payload=None, chunks: list[bytes] | None = None):
    """Build a fake aiohttp response usable as `async with session.request(...)`."""
    mock_resp = MagicMock()
    mock_resp.status = status
    if isinstance(payload, Exception):
        mock_resp.json = AsyncMock(side_effect=payload)
    else:
        mock_resp.json = AsyncMock(return_value=payload)
    mock_resp.close = MagicMock()

    async def _iter_any():
        for chunk in chunks or []:
            yield chunk

    mock_resp.content.iter_any = MagicMock(side_effect=lambda: _iter_any())
    mock_resp.__aenter__ = AsyncMock(return_value=mock_resp)
    mock_resp.__aexit__ = AsyncMock(return_value=False)
    return mock_resp


def fake_session(*responses):
    """A fake ClientSession whose request() returns `responses` in order."""
    mock_session = MagicMock()
    mock_session.request = MagicMock(side_effect=list(responses))
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=False)
    return mock_session


def unanswered_response(entered: asyncio.Event):
    """A fake response whose headers never arrive; sets `entered` once waiting."""
    mock_resp = fake_response(200)

    async def _wait_for_headers(*args):
        entered.set()
        await asyncio.Event().wait()

    mock_resp.__aenter__ = AsyncMock(side_effect=_wait_for_headers)
    return mock_resp
