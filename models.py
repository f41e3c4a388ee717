"""
models.py — canonical home of the appraisal data types.

Everything that crosses the wire is defined here:
  • AnalysisRequest      what we POST to /api/v1/analyze[/stream]
  • AnalysisResult       what the service returns (sync body or `complete` frame)
  • Event envelopes      one dataclass per stream `type`, the tagged union
  • AppraisalHistoryItem / UserProfile

Envelope variants:
  NodeStart, NodeProgress, NodeComplete   progress (session stays loading)
  Complete, ErrorEvent                    terminal

Consumers must handle all five explicitly; see analysis_controller._apply
and style.progress_line.
"""
from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Optional, Union

from errors import ProtocolError


# ── Enumerations ──────────────────────────────────────────────────────────────

class Classification(str, Enum):
    MASS_PRODUCT = "mass_product"
    UNIQUE_ITEM = "unique_item"
    UNKNOWN = "unknown"
    PROHIBITED = "prohibited"


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Platform(str, Enum):
    WEB = "web"
    IOS = "ios"
    ANDROID = "android"


class Node(str, Enum):
    """Pipeline stage that emitted a progress event."""
    VISION = "vision"
    SEARCH = "search"
    PRICE = "price"


def detect_platform(user_agent: Optional[str] = None) -> Platform:
    """iphone/ipad/ipod → ios, android → android, anything else → web."""
    ua = (user_agent or "").lower()
    if any(token in ua for token in ("iphone", "ipad", "ipod")):
        return Platform.IOS
    if "android" in ua:
        return Platform.ANDROID
    return Platform.WEB


def extract_base64_data(data_url: str) -> str:
    """Strip a `data:image/...;base64,` prefix; plain base64 passes through."""
    idx = data_url.find("base64,")
    if idx != -1:
        return data_url[idx + len("base64,"):]
    return data_url


# ── Request ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class AnalysisRequest:
    image_data: str                 # base64, no data-URL prefix
    comment: Optional[str] = None
    platform: Platform = Platform.WEB

    @classmethod
    def from_file(
        cls,
        path: str | Path,
        comment: Optional[str] = None,
        platform: Platform = Platform.WEB,
    ) -> "AnalysisRequest":
        raw = Path(path).read_bytes()
        return cls(
            image_data=base64.b64encode(raw).decode(),
            comment=comment,
            platform=platform,
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"image_base64": extract_base64_data(self.image_data)}
        if self.comment:
            payload["user_comment"] = self.comment
        if self.platform is not None:
            payload["platform"] = Platform(self.platform).value
        return payload


# ── Result ────────────────────────────────────────────────────────────────────

@dataclass
class PriceInfo:
    min_price: float
    max_price: float
    currency: str
    display_message: str

    @classmethod
    def from_dict(cls, data: dict) -> "PriceInfo":
        return cls(
            min_price=data.get("min_price") or 0,
            max_price=data.get("max_price") or 0,
            currency=data.get("currency", "JPY"),
            display_message=data.get("display_message", ""),
        )


@dataclass
class ConfidenceInfo:
    level: ConfidenceLevel
    reasoning: str

    @classmethod
    def from_dict(cls, data: dict) -> "ConfidenceInfo":
        try:
            level = ConfidenceLevel(data.get("level", "low"))
        except ValueError:
            level = ConfidenceLevel.LOW
        return cls(level=level, reasoning=data.get("reasoning", ""))


def _classification(raw: Any) -> Classification:
    try:
        return Classification(raw)
    except ValueError as exc:
        raise ProtocolError(f"unknown classification: {raw!r}") from exc


@dataclass
class AnalysisResult:
    """Appraisal outcome. Which optional fields are set depends on classification."""
    classification: Classification
    appraisal_id: Optional[str] = None
    item_name: Optional[str] = None
    identified_product: Optional[str] = None
    visual_features: list[str] = field(default_factory=list)
    price: Optional[PriceInfo] = None
    confidence: Optional[ConfidenceInfo] = None
    price_factors: Optional[list[str]] = None
    message: Optional[str] = None
    recommendation: Optional[str] = None
    retry_advice: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "AnalysisResult":
        if not isinstance(data, dict):
            raise ProtocolError(f"result must be an object, got {type(data).__name__}")
        if "classification" not in data:
            raise ProtocolError("result has no classification")
        price = data.get("price")
        confidence = data.get("confidence")
        return cls(
            classification=_classification(data["classification"]),
            appraisal_id=data.get("appraisal_id"),
            item_name=data.get("item_name"),
            identified_product=data.get("identified_product"),
            visual_features=list(data.get("visual_features") or []),
            price=PriceInfo.from_dict(price) if isinstance(price, dict) else None,
            confidence=ConfidenceInfo.from_dict(confidence) if isinstance(confidence, dict) else None,
            price_factors=data.get("price_factors"),
            message=data.get("message"),
            recommendation=data.get("recommendation"),
            retry_advice=data.get("retry_advice"),
        )


# ── Event envelopes ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class NodeStart:
    type: ClassVar[str] = "node_start"
    timestamp: str
    node: Optional[Node] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class NodeProgress:
    type: ClassVar[str] = "node_progress"
    timestamp: str
    node: Optional[Node] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class NodeComplete:
    type: ClassVar[str] = "node_complete"
    timestamp: str
    node: Optional[Node] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class Complete:
    type: ClassVar[str] = "complete"
    timestamp: str
    result: Optional[AnalysisResult] = None
    node: Optional[Node] = None
    message: Optional[str] = None
    # Set when `result` was present but could not be parsed
    result_error: Optional[str] = None


@dataclass(frozen=True)
class ErrorEvent:
    type: ClassVar[str] = "error"
    timestamp: str
    message: Optional[str] = None
    node: Optional[Node] = None


ProgressEvent = Union[NodeStart, NodeProgress, NodeComplete]
Envelope = Union[NodeStart, NodeProgress, NodeComplete, Complete, ErrorEvent]

_PROGRESS_TYPES: dict[str, type] = {
    NodeStart.type: NodeStart,
    NodeProgress.type: NodeProgress,
    NodeComplete.type: NodeComplete,
}


def _node(raw: Any) -> Optional[Node]:
    if raw is None:
        return None
    try:
        return Node(raw)
    except ValueError:
        # Unknown stages still render; only the label is lost
        return None


def envelope_from_dict(data: Any) -> Envelope:
    """
    Build the envelope variant named by data["type"].
    Raises ProtocolError for anything that is not a recognised frame.
    """
    if not isinstance(data, dict):
        raise ProtocolError(f"frame must be an object, got {type(data).__name__}")

    kind = data.get("type")
    timestamp = str(data.get("timestamp") or "")
    node = _node(data.get("node"))
    message = data.get("message")

    if kind in _PROGRESS_TYPES:
        return _PROGRESS_TYPES[kind](timestamp=timestamp, node=node, message=message)
    if kind == Complete.type:
        raw_result = data.get("result")
        if raw_result is None:
            return Complete(timestamp=timestamp, node=node, message=message)
        try:
            result = AnalysisResult.from_dict(raw_result)
        except ProtocolError as exc:
            return Complete(timestamp=timestamp, node=node, message=message, result_error=str(exc))
        return Complete(timestamp=timestamp, result=result, node=node, message=message)
    if kind == ErrorEvent.type:
        return ErrorEvent(timestamp=timestamp, message=message, node=node)
    raise ProtocolError(f"unknown frame type: {kind!r}")


def is_terminal(envelope: Envelope) -> bool:
    return isinstance(envelope, (Complete, ErrorEvent))


def parse_timestamp(value: str) -> Optional[datetime]:
    """ISO-8601 → datetime; a trailing 'Z' is accepted. None when unparsable."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


# ── History / profile ─────────────────────────────────────────────────────────

@dataclass
class AppraisalHistoryItem:
    id: str
    created_at: str
    classification: Classification
    item_name: Optional[str] = None
    price: Optional[PriceInfo] = None

    @classmethod
    def from_dict(cls, data: Any) -> "AppraisalHistoryItem":
        if not isinstance(data, dict) or "id" not in data:
            raise ProtocolError("history item must be an object with an id")
        price = data.get("price")
        return cls(
            id=str(data["id"]),
            created_at=data.get("created_at", ""),
            classification=_classification(data.get("classification", "unknown")),
            item_name=data.get("item_name"),
            price=PriceInfo.from_dict(price) if isinstance(price, dict) else None,
        )


@dataclass
class UserProfile:
    uid: str
    created_at: str
    total_appraisals: int
    platform: Platform

    @classmethod
    def from_dict(cls, data: Any) -> "UserProfile":
        if not isinstance(data, dict) or "uid" not in data:
            raise ProtocolError("user profile must be an object with a uid")
        try:
            platform = Platform(data.get("platform", "web"))
        except ValueError:
            platform = Platform.WEB
        return cls(
            uid=data["uid"],
            created_at=data.get("created_at", ""),
            total_appraisals=int(data.get("total_appraisals") or 0),
            platform=platform,
        )
