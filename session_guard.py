"""
session_guard.py — make sure an identity exists before the first authenticated call.

ensure_identity() is idempotent: a cached identity returns immediately.
Otherwise exactly one anonymous sign-in runs; concurrent callers await the
same in-flight acquisition and receive the same identity or the same error.
A failed sign-in leaves the context without an identity, so the next call
starts a fresh attempt.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from identity import AuthContext, Identity

logger = logging.getLogger(__name__)


class SessionGuard:

    def __init__(self, auth: AuthContext) -> None:
        self._auth = auth
        self._inflight: Optional[asyncio.Future] = None

    @property
    def acquiring(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def ensure_identity(self) -> Identity:
        identity = self._auth.identity
        if identity is not None:
            return identity

        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._acquire())
        task = self._inflight
        try:
            # shield: one cancelled caller must not abort the shared sign-in
            return await asyncio.shield(task)
        finally:
            if task.done() and self._inflight is task:
                self._inflight = None

    async def _acquire(self) -> Identity:
        logger.info("No identity yet, signing in anonymously")
        try:
            identity = await self._auth.provider.sign_in_anonymously()
        except Exception as exc:
            logger.warning("Anonymous sign-in failed: %s", exc)
            raise
        self._auth.set_identity(identity)
        return identity
