"""
cancel_token.py — cooperative cancellation handle for one in-flight read.

A token is created per submission (or per history fetch) and threaded
through the transport and the decode loop. cancel() flips the flag and
runs the registered callbacks once. The API client registers a hook that
interrupts the waiting task until the response arrives, then
`response.close` so the pending socket read is aborted. Every state
mutation downstream checks `cancelled` first.
"""
from __future__ import annotations

import logging
from typing import Callable

logger = logging.getLogger(__name__)


class CancelToken:

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], object]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def add_callback(self, callback: Callable[[], object]) -> None:
        """Register an abort hook. Runs immediately if already cancelled."""
        if self._cancelled:
            self._run(callback)
        else:
            self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[], object]) -> None:
        try:
            self._callbacks.remove(callback)
        except ValueError:
            pass

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            self._run(cb)

    @staticmethod
    def _run(callback: Callable[[], object]) -> None:
        # An abort hook failing must not stop the remaining hooks
        try:
            callback()
        except Exception as exc:
            logger.warning("Cancel callback %r failed: %s", callback, exc)
