"""
style.py — plain-text rendering for the terminal client.

Design language:
  • Cards with consistent emoji icons and box-drawing dividers
  • One line per progress event: [HH:MM:SS] icon label — message
  • Failures are a single inline line, cancellation renders nothing

All text printed by main.py should be formatted through this module.
"""
from __future__ import annotations

from typing import Iterable, Optional

from models import (
    AnalysisResult, AppraisalHistoryItem, Classification, Complete, Envelope,
    ErrorEvent, Node, NodeComplete, NodeProgress, NodeStart, PriceInfo,
    parse_timestamp,
)

# ── Visual constants ──────────────────────────────────────────────────────────

DIV   = "━━━━━━━━━━━━━━━━━━━━━━━━━━"    # thick divider
SDIV  = "┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄"    # subtle divider

CONF  = {"high": "🟢", "medium": "🟡", "low": "🔴"}

NODE_LABELS = {
    Node.VISION: ("👁", "Image analysis"),
    Node.SEARCH: ("🔍", "Product search"),
    Node.PRICE:  ("💴", "Price research"),
}
DEFAULT_ICON = "🤖"

CLASSIFICATION_TITLES = {
    Classification.MASS_PRODUCT: "🏷️ MASS-PRODUCED ITEM",
    Classification.UNIQUE_ITEM:  "💎 ONE-OF-A-KIND ITEM",
    Classification.UNKNOWN:      "❓ COULD NOT IDENTIFY",
    Classification.PROHIBITED:   "🚫 CANNOT APPRAISE",
}

LOADING_FOOTER = "⏳ Appraising… this usually takes 10–30 seconds"


# ── Small formatters ──────────────────────────────────────────────────────────

def fmt_price(value: float) -> str:
    """1234 → '¥1,234'"""
    return f"¥{round(value):,}"


def price_range(price: Optional[PriceInfo]) -> str:
    if price is None:
        return "-"
    if price.min_price == price.max_price:
        return fmt_price(price.min_price)
    return f"{fmt_price(price.min_price)} – {fmt_price(price.max_price)}"


def fmt_time(timestamp: str) -> str:
    parsed = parse_timestamp(timestamp)
    return parsed.strftime("%H:%M:%S") if parsed else "--:--:--"


# ── Progress ──────────────────────────────────────────────────────────────────

def progress_line(event: Envelope) -> Optional[str]:
    """
    One display line for a stream event, or None when it is not shown.
    node_complete is internal bookkeeping; terminal events are rendered by
    result_card() / error_line() instead.
    """
    if isinstance(event, NodeStart):
        icon, label = NODE_LABELS.get(event.node, (DEFAULT_ICON, "Analysis"))
        text = f"{label} — {event.message}" if event.message else label
        return f"[{fmt_time(event.timestamp)}] {icon} {text}"
    if isinstance(event, NodeProgress):
        icon, _ = NODE_LABELS.get(event.node, (DEFAULT_ICON, ""))
        return f"[{fmt_time(event.timestamp)}] {icon} {event.message or '…'}"
    if isinstance(event, NodeComplete):
        return None
    if isinstance(event, (Complete, ErrorEvent)):
        return None
    raise TypeError(f"unhandled envelope: {event!r}")


def progress_lines(events: Iterable[Envelope]) -> list[str]:
    return [line for line in (progress_line(e) for e in events) if line is not None]


# ── Result ────────────────────────────────────────────────────────────────────

def result_card(result: AnalysisResult) -> str:
    title = CLASSIFICATION_TITLES[result.classification]
    lines = [title, DIV]

    name = result.item_name or result.identified_product
    if name:
        lines.append(f"📦 {name}")

    if result.classification is Classification.MASS_PRODUCT:
        lines.append(f"💴 {price_range(result.price)}")
        if result.price and result.price.display_message:
            lines.append(f"   {result.price.display_message}")
        if result.confidence:
            level = result.confidence.level.value
            lines.append(f"{CONF.get(level, '⚪')} Confidence: {level}")
            if result.confidence.reasoning:
                lines.append(f"   {result.confidence.reasoning}")
        if result.price_factors:
            lines.append(SDIV)
            lines.extend(f"▸ {factor}" for factor in result.price_factors)
    elif result.classification is Classification.UNIQUE_ITEM:
        if result.recommendation:
            lines.append(f"💡 {result.recommendation}")
    elif result.classification is Classification.UNKNOWN:
        if result.retry_advice:
            lines.append(f"📸 {result.retry_advice}")
    elif result.classification is Classification.PROHIBITED:
        pass

    if result.visual_features:
        lines.append(SDIV)
        lines.append("Features: " + ", ".join(result.visual_features[:5]))
    if result.message:
        lines.append(SDIV)
        lines.append(result.message)
    lines.append(DIV)
    return "\n".join(lines)


def error_line(message: str) -> str:
    return f"⚠️ {message}"


# ── History ───────────────────────────────────────────────────────────────────

def history_line(item: AppraisalHistoryItem) -> str:
    when = fmt_time(item.created_at)
    date = item.created_at[:10] if item.created_at else ""
    name = item.item_name or "-"
    return f"{date} {when}  {name}  ({item.classification.value})  {price_range(item.price)}"


def history_page(items: list[AppraisalHistoryItem], has_more: bool) -> str:
    if not items:
        return "📭 No appraisals yet"
    lines = ["🕘 APPRAISAL HISTORY", DIV]
    lines.extend(history_line(item) for item in items)
    lines.append(DIV)
    if has_more:
        lines.append("▸ more available")
    return "\n".join(lines)
