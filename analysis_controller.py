"""
analysis_controller.py — lifecycle of one appraisal submission.

    IDLE ──submit──▶ LOADING ──complete──▶ SUCCESS
                        │    ──error/fail─▶ ERROR
                        └──cancel/reset──▶ IDLE

Rules:
  • submit() is legal from IDLE, SUCCESS and ERROR only. While LOADING it
    raises AnalysisInProgress; the check happens before the first await,
    so two concurrent submits can never both get through.
  • Every submission gets a fresh AnalysisSession and CancelToken. All
    mutations go through _mutable(), which refuses once the token is
    cancelled or the session has been replaced.
  • Exactly one terminal transition per submission that is not cancelled:
    a `complete` frame, an `error` frame, a failure, or a stream that ends
    without either (reported as an error).
  • cancel()/reset() abort the transport and discard the session. Nothing
    is surfaced for a cancelled submission.

The event log keeps every progress envelope, node_complete included;
hiding node_complete is done by style.progress_lines().
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from api_client import ApiClient
from cancel_token import CancelToken
from errors import AnalysisInProgress, ProtocolError, TransportFailure
from models import (
    AnalysisRequest, AnalysisResult, Complete, Envelope, ErrorEvent,
    NodeComplete, NodeProgress, NodeStart, ProgressEvent,
)
from session_guard import SessionGuard
from stream_decoder import decode_stream

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Appraisal failed. Please try again."
STREAM_ENDED_ERROR = "Analysis stream ended without a result"
MISSING_RESULT_ERROR = "Analysis completed without a result"
INVALID_RESULT_ERROR = "Analysis returned an invalid result"
NETWORK_ERROR = "Could not reach the appraisal service. Check your connection and try again."


class AnalysisState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class AnalysisSession:
    state: AnalysisState = AnalysisState.IDLE
    events: list[ProgressEvent] = field(default_factory=list)
    result: Optional[AnalysisResult] = None
    error_message: Optional[str] = None
    cancel_token: Optional[CancelToken] = None

    @property
    def is_loading(self) -> bool:
        return self.state is AnalysisState.LOADING


class AnalysisController:

    def __init__(
        self,
        client: ApiClient,
        guard: SessionGuard,
        on_event: Optional[Callable[[ProgressEvent], None]] = None,
    ) -> None:
        self._client = client
        self._guard = guard
        self._on_event = on_event
        self._session = AnalysisSession()

    # ── Observed state ────────────────────────────────────────────────────────

    @property
    def session(self) -> AnalysisSession:
        return self._session

    @property
    def state(self) -> AnalysisState:
        return self._session.state

    @property
    def events(self) -> list[ProgressEvent]:
        return list(self._session.events)

    @property
    def result(self) -> Optional[AnalysisResult]:
        return self._session.result

    @property
    def error_message(self) -> Optional[str]:
        return self._session.error_message

    @property
    def is_loading(self) -> bool:
        return self._session.is_loading

    # ── Commands ──────────────────────────────────────────────────────────────

    async def submit(self, request: AnalysisRequest, stream: bool = True) -> AnalysisSession:
        """
        Run one submission to completion (or cancellation) and return its session.
        Analysis failures are recorded on the session, not raised.
        """
        session = self._begin()
        await self._run(session, request, stream)
        return session

    def start(self, request: AnalysisRequest, stream: bool = True) -> asyncio.Task:
        """Enter LOADING now and run the submission in a background task."""
        session = self._begin()
        return asyncio.ensure_future(self._run(session, request, stream))

    def cancel(self) -> None:
        session = self._session
        if session.is_loading and session.cancel_token is not None:
            logger.info("Cancelling in-flight analysis")
            session.cancel_token.cancel()
        self._session = AnalysisSession()

    def reset(self) -> None:
        self.cancel()

    # ── Internals ─────────────────────────────────────────────────────────────

    def _begin(self) -> AnalysisSession:
        if self._session.is_loading:
            raise AnalysisInProgress("an analysis is already running")
        session = AnalysisSession(state=AnalysisState.LOADING, cancel_token=CancelToken())
        self._session = session
        return session

    def _mutable(self, session: AnalysisSession) -> bool:
        token = session.cancel_token
        return (
            session is self._session
            and session.is_loading
            and token is not None
            and not token.cancelled
        )

    async def _run(self, session: AnalysisSession, request: AnalysisRequest, stream: bool) -> None:
        token = session.cancel_token
        try:
            await self._guard.ensure_identity()
            if not self._mutable(session):
                return
            if stream:
                await self._consume_stream(session, request, token)
            else:
                result = await self._client.analyze(request, cancel_token=token)
                self._succeed(session, result)
        except asyncio.CancelledError:
            token.cancel()
            if session is self._session:
                self._session = AnalysisSession()
            raise
        except TransportFailure as exc:
            if not self._mutable(session):
                return
            logger.error("Analysis transport failed: %s", exc)
            self._fail(session, NETWORK_ERROR)
        except Exception as exc:
            if not self._mutable(session):
                return
            logger.error("Analysis failed: %s", exc)
            self._fail(session, str(exc) or GENERIC_ERROR)

    async def _consume_stream(
        self,
        session: AnalysisSession,
        request: AnalysisRequest,
        token: CancelToken,
    ) -> None:
        envelopes = decode_stream(self._client.analyze_stream(request, token), token)
        async with aclosing(envelopes):
            async for envelope in envelopes:
                if not self._mutable(session):
                    return
                self._apply(session, envelope)
                if not session.is_loading:
                    return
        if self._mutable(session):
            logger.warning("Stream closed before a terminal event")
            self._fail(session, STREAM_ENDED_ERROR)

    def _apply(self, session: AnalysisSession, envelope: Envelope) -> None:
        if isinstance(envelope, (NodeStart, NodeProgress, NodeComplete)):
            session.events.append(envelope)
            logger.debug("[%s] %s %s", envelope.type, envelope.node, envelope.message or "")
            if self._on_event is not None:
                self._on_event(envelope)
        elif isinstance(envelope, Complete):
            if envelope.result_error is not None:
                logger.error("Protocol error: invalid result (%s)", envelope.result_error)
                self._fail(session, INVALID_RESULT_ERROR)
            elif envelope.result is None:
                exc = ProtocolError(MISSING_RESULT_ERROR)
                logger.error("Protocol error: %s", exc)
                self._fail(session, str(exc))
            else:
                self._succeed(session, envelope.result)
        elif isinstance(envelope, ErrorEvent):
            self._fail(session, envelope.message or GENERIC_ERROR)
        else:
            raise TypeError(f"unhandled envelope: {envelope!r}")

    def _succeed(self, session: AnalysisSession, result: AnalysisResult) -> None:
        if not self._mutable(session):
            return
        session.result = result
        session.state = AnalysisState.SUCCESS
        session.cancel_token = None
        logger.info("Analysis complete: %s", result.classification.value)

    def _fail(self, session: AnalysisSession, message: str) -> None:
        if not self._mutable(session):
            return
        session.error_message = message
        session.state = AnalysisState.ERROR
        session.cancel_token = None
        logger.info("Analysis error: %s", message)
