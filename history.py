"""
history.py — offset pagination over the user's past appraisals.

    pager = HistoryPager(client, guard)
    await pager.refresh()      # offset 0, replaces items
    await pager.load_more()    # offset len(items), appends

A page shorter than page_size means the collection is exhausted.
Reads are independent of AnalysisController and can run alongside an
active submission. cancel() aborts the in-flight read; its page is
discarded and nothing is reported.
"""
from __future__ import annotations

import logging
from typing import Optional

import config
from api_client import ApiClient
from cancel_token import CancelToken
from models import AppraisalHistoryItem
from session_guard import SessionGuard

logger = logging.getLogger(__name__)


class HistoryPager:

    def __init__(
        self,
        client: ApiClient,
        guard: Optional[SessionGuard] = None,
        page_size: Optional[int] = None,
    ) -> None:
        self._client = client
        self._guard = guard
        self.page_size = page_size or config.HISTORY_PAGE_SIZE
        self.items: list[AppraisalHistoryItem] = []
        self.error: Optional[str] = None
        self.has_more = True
        self._token: Optional[CancelToken] = None

    @property
    def loading(self) -> bool:
        return self._token is not None

    async def refresh(self) -> list[AppraisalHistoryItem]:
        """Reload from the first page. Cancels a read that is still running."""
        self.cancel()
        await self._fetch(reset=True)
        return self.items

    async def load_more(self) -> list[AppraisalHistoryItem]:
        """Append the next page. No-op while a read is running or after the last page."""
        if self.loading or not self.has_more:
            return self.items
        await self._fetch(reset=False)
        return self.items

    def cancel(self) -> None:
        if self._token is not None:
            self._token.cancel()
            self._token = None

    async def _fetch(self, reset: bool) -> None:
        token = CancelToken()
        self._token = token
        self.error = None
        offset = 0 if reset else len(self.items)
        try:
            if self._guard is not None:
                await self._guard.ensure_identity()
            page = await self._client.get_history(self.page_size, offset, cancel_token=token)
        except Exception as exc:
            if token.cancelled:
                return
            logger.warning("History fetch failed (offset=%d): %s", offset, exc)
            self.error = str(exc) or "Could not load appraisal history"
            return
        finally:
            if self._token is token:
                self._token = None

        if token.cancelled:
            return
        self.items = page if reset else self.items + page
        self.has_more = len(page) == self.page_size
        logger.debug("History: %d item(s) at offset %d, has_more=%s", len(page), offset, self.has_more)
