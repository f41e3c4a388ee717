"""
errors.py — exception taxonomy shared by the client modules.

  AppraisalError
    ├── TransportFailure     connection-level failure (DNS, reset, timeout)
    ├── ServerError          non-2xx response, carries the server `detail`
    │     └── AuthFailure    401 that survived the single token refresh
    ├── ProtocolError        response/frame that does not match the wire format
    ├── IdentityError        the identity provider refused or failed
    └── AnalysisInProgress   submit() while a submission is still loading

Cancellation is not an error and has no class here.
"""
from __future__ import annotations

from typing import Optional


class AppraisalError(Exception):
    """Base exception for the appraisal client."""


class TransportFailure(AppraisalError):
    """The connection failed before a complete response was read."""


class ServerError(AppraisalError):
    """The service answered with a non-2xx status."""

    def __init__(self, status: int, detail: Optional[str] = None):
        self.status = status
        self.detail = detail
        super().__init__(detail or f"HTTP {status}")


class AuthFailure(ServerError):
    """The service rejected the bearer token."""


class ProtocolError(AppraisalError):
    """A payload or stream frame did not match the expected format."""


class IdentityError(AppraisalError):
    """The identity provider could not issue or refresh a token."""


class AnalysisInProgress(AppraisalError):
    """An analysis is already loading on this controller."""
