"""
api_client.py — authenticated HTTP calls against the appraisal service.

One ApiClient per AuthContext. Every call goes through _open(), which:
  • attaches `Authorization: Bearer <token>` when require_auth and an identity exists
  • on the first 401 (and only if an identity exists) forces a token refresh
    and retries exactly once; a second 401 raises AuthFailure
  • turns any other non-2xx into ServerError, using the server's `detail`
    field when the body has one, else "HTTP <status>"
  • turns connection-level failures into TransportFailure
  • lets the cancel token abort the call at any phase: before the response
    it interrupts the waiting task (surfacing TransportFailure), after it
    closes the response

If require_auth is set but no identity exists the request still goes out
without the header. SessionGuard is responsible for acquiring one first.

Endpoints:
  POST /api/v1/analyze            analyze()         → AnalysisResult
  POST /api/v1/analyze/stream     analyze_stream()  → raw byte chunks
  GET  /api/v1/appraisals         get_history()     → list[AppraisalHistoryItem]
  GET  /api/v1/appraisals/{id}    get_appraisal()   → AppraisalHistoryItem | None
  GET  /api/v1/users/me           get_user_profile()→ UserProfile
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional
from urllib.parse import quote

import aiohttp

import config
from cancel_token import CancelToken
from errors import AuthFailure, ProtocolError, ServerError, TransportFailure
from identity import AuthContext
from models import AnalysisRequest, AnalysisResult, AppraisalHistoryItem, UserProfile

logger = logging.getLogger(__name__)

ANALYZE_PATH = "/api/v1/analyze"
ANALYZE_STREAM_PATH = "/api/v1/analyze/stream"
HISTORY_PATH = "/api/v1/appraisals"
PROFILE_PATH = "/api/v1/users/me"


class ApiClient:

    def __init__(
        self,
        auth: AuthContext,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._auth = auth
        self._base_url = (base_url or config.API_BASE_URL).rstrip("/")
        # total=None means no ceiling (aiohttp's own default is 5 minutes)
        self._timeout = aiohttp.ClientTimeout(
            total=timeout if timeout is not None else config.REQUEST_TIMEOUT_SECS
        )

    @property
    def auth(self) -> AuthContext:
        return self._auth

    # ── Generic calls ─────────────────────────────────────────────────────────

    async def request(
        self,
        path: str,
        method: str = "GET",
        body: Any = None,
        require_auth: bool = True,
        params: Optional[dict] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> Any:
        """Single JSON call. Returns the decoded 2xx body as-is."""
        async with self._open(
            method, path,
            body=body, params=params,
            require_auth=require_auth, cancel_token=cancel_token,
        ) as resp:
            try:
                return await resp.json(content_type=None)
            except ValueError as exc:
                raise ProtocolError(f"{method} {path}: response is not JSON") from exc

    async def stream(
        self,
        path: str,
        body: Any,
        cancel_token: CancelToken,
        require_auth: bool = True,
    ) -> AsyncIterator[bytes]:
        """
        POST `body` and yield the response body chunk by chunk as it arrives.
        Cancelling `cancel_token` closes the response, which ends the read.
        """
        async with self._open(
            "POST", path,
            body=body,
            require_auth=require_auth, cancel_token=cancel_token,
        ) as resp:
            async for chunk in resp.content.iter_any():
                yield chunk

    # ── Endpoints ─────────────────────────────────────────────────────────────

    async def analyze(
        self,
        request: AnalysisRequest,
        cancel_token: Optional[CancelToken] = None,
    ) -> AnalysisResult:
        data = await self.request(
            ANALYZE_PATH, method="POST", body=request.to_payload(), cancel_token=cancel_token,
        )
        return AnalysisResult.from_dict(data)

    def analyze_stream(self, request: AnalysisRequest, cancel_token: CancelToken) -> AsyncIterator[bytes]:
        return self.stream(ANALYZE_STREAM_PATH, request.to_payload(), cancel_token)

    async def get_history(
        self,
        limit: int = 10,
        offset: int = 0,
        cancel_token: Optional[CancelToken] = None,
    ) -> list[AppraisalHistoryItem]:
        data = await self.request(
            HISTORY_PATH,
            params={"limit": str(limit), "offset": str(offset)},
            cancel_token=cancel_token,
        )
        if not isinstance(data, list):
            raise ProtocolError(f"history page must be a list, got {type(data).__name__}")
        return [AppraisalHistoryItem.from_dict(item) for item in data]

    async def get_appraisal(self, appraisal_id: str) -> Optional[AppraisalHistoryItem]:
        data = await self.request(f"{HISTORY_PATH}/{quote(appraisal_id, safe='')}")
        return AppraisalHistoryItem.from_dict(data) if data is not None else None

    async def get_user_profile(self) -> UserProfile:
        return UserProfile.from_dict(await self.request(PROFILE_PATH))

    # ── HTTP helpers ──────────────────────────────────────────────────────────

    async def _headers(self, require_auth: bool) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if require_auth:
            token = await self._auth.get_token()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        return headers

    @asynccontextmanager
    async def _open(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        params: Optional[dict] = None,
        require_auth: bool = True,
        cancel_token: Optional[CancelToken] = None,
    ):
        url = f"{self._base_url}{path}"
        # Until the response is handed out, cancelling the token interrupts
        # this task wherever it waits (token refresh, connect, headers).
        abort = None
        if cancel_token is not None:
            if cancel_token.cancelled:
                raise TransportFailure(f"{method} {path} cancelled")
            abort = asyncio.current_task().cancel
            cancel_token.add_callback(abort)
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                for attempt in (1, 2):
                    headers = await self._headers(require_auth)
                    async with session.request(
                        method,
                        url,
                        json=body,
                        params=params,
                        headers=headers,
                    ) as resp:
                        retry = (
                            resp.status == 401
                            and attempt == 1
                            and require_auth
                            and self._auth.identity is not None
                        )
                        if not retry:
                            await _raise_for_status(resp, method, path)
                            if cancel_token is not None:
                                cancel_token.remove_callback(abort)
                                abort = None
                                cancel_token.add_callback(resp.close)
                            try:
                                yield resp
                            finally:
                                if cancel_token is not None:
                                    cancel_token.remove_callback(resp.close)
                            return
                    logger.info("%s %s → 401, refreshing token and retrying once", method, path)
                    await self._auth.get_token(force_refresh=True)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransportFailure(f"{method} {path} failed: {exc or type(exc).__name__}") from exc
        except asyncio.CancelledError:
            if abort is None or not cancel_token.cancelled:
                raise
            asyncio.current_task().uncancel()
            logger.info("%s %s aborted before a response arrived", method, path)
            raise TransportFailure(f"{method} {path} cancelled") from None
        finally:
            if abort is not None:
                cancel_token.remove_callback(abort)


async def _raise_for_status(resp: aiohttp.ClientResponse, method: str, path: str) -> None:
    if 200 <= resp.status < 300:
        return
    detail: Optional[str] = None
    try:
        payload = await resp.json(content_type=None)
        if isinstance(payload, dict) and payload.get("detail"):
            detail = str(payload["detail"])
    except ValueError:
        pass
    logger.warning("%s %s → HTTP %d: %s", method, path, resp.status, detail or "-")
    if resp.status == 401:
        raise AuthFailure(resp.status, detail)
    raise ServerError(resp.status, detail)
