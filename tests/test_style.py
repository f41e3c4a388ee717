"""
Tests for style.py — plain-text rendering helpers.

Covers:
  - fmt_price() / price_range(): yen formatting and single-price ranges
  - progress_line(): node_complete and terminal events are not rendered
  - progress_lines(): filtering keeps order
  - result_card(): classification-specific fields
  - history_page(): empty and non-empty pages
"""
from __future__ import annotations

import pytest

import style
from models import (
    AnalysisResult, AppraisalHistoryItem, Classification, Complete, ConfidenceInfo,
    ConfidenceLevel, ErrorEvent, Node, NodeComplete, NodeProgress, NodeStart, PriceInfo,
)

TS = "2025-01-01T09:05:07Z"


# ── Prices ─────────────────────────────────────────────────────────────────────

class TestPrices:
    def test_fmt_price_thousands(self):
        assert style.fmt_price(1234) == "¥1,234"

    def test_fmt_price_rounds(self):
        assert style.fmt_price(999.6) == "¥1,000"

    def test_range(self):
        price = PriceInfo(min_price=1000, max_price=2500, currency="JPY", display_message="")
        assert style.price_range(price) == "¥1,000 – ¥2,500"

    def test_single_price(self):
        price = PriceInfo(min_price=800, max_price=800, currency="JPY", display_message="")
        assert style.price_range(price) == "¥800"

    def test_no_price(self):
        assert style.price_range(None) == "-"


# ── Progress ───────────────────────────────────────────────────────────────────

class TestProgressLine:
    def test_node_start_has_label_and_time(self):
        line = style.progress_line(NodeStart(timestamp=TS, node=Node.VISION, message="画像を解析中"))
        assert line == "[09:05:07] 👁 Image analysis — 画像を解析中"

    def test_node_progress(self):
        line = style.progress_line(NodeProgress(timestamp=TS, node=Node.PRICE, message="相場を確認"))
        assert "💴" in line and "相場を確認" in line

    def test_unknown_node_uses_default_icon(self):
        line = style.progress_line(NodeProgress(timestamp=TS, node=None, message="…"))
        assert style.DEFAULT_ICON in line

    def test_bad_timestamp_placeholder(self):
        line = style.progress_line(NodeStart(timestamp="garbage", node=Node.SEARCH))
        assert line.startswith("[--:--:--]")

    def test_node_complete_hidden(self):
        assert style.progress_line(NodeComplete(timestamp=TS, node=Node.VISION)) is None

    def test_terminal_events_hidden(self):
        assert style.progress_line(Complete(timestamp=TS)) is None
        assert style.progress_line(ErrorEvent(timestamp=TS, message="x")) is None

    def test_unknown_object_rejected(self):
        with pytest.raises(TypeError):
            style.progress_line(object())  # type: ignore[arg-type]

    def test_progress_lines_filters_and_keeps_order(self):
        events = [
            NodeStart(timestamp=TS, node=Node.VISION, message="a"),
            NodeComplete(timestamp=TS, node=Node.VISION),
            NodeStart(timestamp=TS, node=Node.SEARCH, message="b"),
        ]
        lines = style.progress_lines(events)
        assert len(lines) == 2
        assert lines[0].endswith("a") and lines[1].endswith("b")


# ── Result card ────────────────────────────────────────────────────────────────

class TestResultCard:
    def test_mass_product(self):
        result = AnalysisResult(
            classification=Classification.MASS_PRODUCT,
            item_name="ゲームボーイ",
            price=PriceInfo(min_price=3000, max_price=8000, currency="JPY", display_message="中古相場"),
            confidence=ConfidenceInfo(level=ConfidenceLevel.HIGH, reasoning="型番一致"),
            price_factors=["箱なし"],
        )
        card = style.result_card(result)
        assert "MASS-PRODUCED" in card
        assert "ゲームボーイ" in card
        assert "¥3,000 – ¥8,000" in card
        assert "🟢 Confidence: high" in card
        assert "▸ 箱なし" in card

    def test_null_prices_render(self):
        result = AnalysisResult.from_dict({
            "classification": "mass_product",
            "item_name": "ラジカセ",
            "price": {"min_price": None, "max_price": None, "currency": "JPY", "display_message": ""},
        })
        card = style.result_card(result)
        assert "ラジカセ" in card
        assert "¥0" in card

    def test_unique_item_shows_recommendation(self):
        result = AnalysisResult(
            classification=Classification.UNIQUE_ITEM,
            recommendation="専門家に相談してください",
        )
        card = style.result_card(result)
        assert "ONE-OF-A-KIND" in card
        assert "専門家に相談してください" in card
        assert "¥" not in card

    def test_unknown_shows_retry_advice(self):
        result = AnalysisResult(classification=Classification.UNKNOWN, retry_advice="もう一度撮影してください")
        assert "もう一度撮影してください" in style.result_card(result)

    def test_prohibited_shows_message(self):
        result = AnalysisResult(classification=Classification.PROHIBITED, message="この商品は査定できません")
        card = style.result_card(result)
        assert "CANNOT APPRAISE" in card
        assert "この商品は査定できません" in card

    def test_error_line(self):
        assert style.error_line("boom") == "⚠️ boom"


# ── History ────────────────────────────────────────────────────────────────────

class TestHistoryPage:
    def test_empty(self):
        assert "No appraisals" in style.history_page([], has_more=False)

    def test_lines_and_more_marker(self):
        items = [
            AppraisalHistoryItem(
                id="1", created_at="2025-02-03T04:05:06Z",
                classification=Classification.MASS_PRODUCT, item_name="時計",
                price=PriceInfo(min_price=5000, max_price=9000, currency="JPY", display_message=""),
            ),
        ]
        page = style.history_page(items, has_more=True)
        assert "2025-02-03 04:05:06  時計  (mass_product)  ¥5,000 – ¥9,000" in page
        assert "more available" in page
