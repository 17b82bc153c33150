"""Tests for token allocation and trimming."""

from __future__ import annotations

from promptline.config import AllocationConfig
from promptline.context.allocator import (
    Segment,
    SegmentKind,
    TrimNote,
    allocate_tokens,
    trim_context,
    trim_to_budget,
)
from promptline.utils.tokens import estimate_tokens


class TestTrimToBudget:
    def test_short_text_is_untouched(self):
        result = trim_to_budget("user", "hello", 10)
        assert result.text == "hello"
        assert result.note == TrimNote.NONE
        assert result.used_tokens == result.total_tokens == 2

    def test_long_text_keeps_head_and_tail(self):
        text = "H" * 500 + "M" * 500 + "T" * 500
        result = trim_to_budget("system", text, 50)
        assert result.used_tokens <= 50
        assert estimate_tokens(result.text) <= 50
        assert result.text.startswith("H")
        assert result.text.endswith("T")
        assert result.note == TrimNote.MIXED
        assert result.total_tokens == 375

    def test_zero_budget_gives_empty_text(self):
        result = trim_to_budget("user", "abcdef", 0)
        assert result.text == ""
        assert result.used_tokens == 0
        assert result.note == TrimNote.MIXED

    def test_tiny_budget_keeps_bare_head(self):
        result = trim_to_budget("user", "abcdefghij" * 10, 1)
        assert result.note == TrimNote.HEAD
        assert result.text == "abcd"


class TestTrimContext:
    def test_priority_keeps_selection(self):
        segments = [
            Segment("p", "paste", "x" * 400, SegmentKind.PASTE),
            Segment("f", "file", "y" * 400, SegmentKind.FILE),
            Segment("s", "selection", "z" * 400, SegmentKind.SELECTION),
        ]
        results = trim_context(segments, 100)
        assert [r.id for r in results] == ["s"]
        assert results[0].note == TrimNote.NONE

    def test_equal_priority_keeps_input_order(self):
        segments = [
            Segment("a", "a.py", "a" * 40, SegmentKind.FILE),
            Segment("b", "b.py", "b" * 40, SegmentKind.FILE),
        ]
        results = trim_context(segments, 100)
        assert [r.id for r in results] == ["a", "b"]

    def test_focus_window_keeps_declaration(self):
        text = "x" * 2000 + "def main():\n" + "y" * 2000
        results = trim_context([Segment("f", "main.py", text, SegmentKind.FILE)], 600)
        assert len(results) == 1
        assert results[0].note == TrimNote.MIXED
        assert results[0].used_tokens <= 600
        assert "def main" in results[0].text

    def test_zero_budget_drops_everything(self):
        assert trim_context([Segment("a", "a", "text")], 0) == []

    def test_remaining_budget_flows_to_next_segment(self):
        segments = [
            Segment("s", "sel", "s" * 80, SegmentKind.SELECTION),
            Segment("f", "file", "f" * 4000, SegmentKind.FILE),
        ]
        results = trim_context(segments, 100)
        assert results[0].used_tokens == 20
        assert results[1].used_tokens <= 80
        assert results[1].note != TrimNote.NONE


class TestAllocateTokens:
    def test_end_to_end_scenario(self):
        result = allocate_tokens(
            "s" * 50,
            "u" * 200,
            [Segment("ctx", "big.py", "c" * 5000, SegmentKind.FILE)],
            context_window=1000,
            desired_output=200,
        )
        assert result.input_budget == 800
        assert result.system.note == TrimNote.NONE
        assert result.user.note == TrimNote.NONE
        assert len(result.context) == 1
        assert result.context[0].note == TrimNote.MIXED
        assert result.context[0].used_tokens <= 560
        assert result.prompt_total <= result.input_budget
        assert result.budget_ok is True

    def test_max_context_tokens_caps_context_share(self):
        result = allocate_tokens(
            "", "", [Segment("c", "c", "c" * 40_000)],
            context_window=100_000,
            desired_output=1000,
            allocation=AllocationConfig(max_context_tokens=300),
        )
        assert result.context[0].used_tokens <= 300

    def test_prompt_total_never_exceeds_input_budget(self):
        for window in (200, 1000, 4000):
            for size in (0, 10, 999, 20_000):
                result = allocate_tokens(
                    "s" * size,
                    "u" * size,
                    [
                        Segment("a", "a", "a" * size, SegmentKind.PASTE),
                        Segment("b", "b", "b" * size, SegmentKind.SELECTION),
                    ],
                    context_window=window,
                    desired_output=window // 4,
                )
                assert result.prompt_total <= result.input_budget
                assert result.budget_ok is True

    def test_degenerate_inputs_do_not_raise(self):
        result = allocate_tokens("", "", [], context_window=0)
        assert result.input_budget == 0
        assert result.prompt_total == 0

    def test_output_larger_than_window(self):
        result = allocate_tokens("sys", "user", [], context_window=100, desired_output=500)
        assert result.input_budget == 0
        assert result.system.text == ""
        assert result.plan.overflow is True

    def test_report_lists_every_segment(self):
        result = allocate_tokens(
            "sys", "user", [Segment("c1", "notes.md", "n" * 10)], context_window=1000,
        )
        report = result.to_report()
        assert [row["id"] for row in report["segments"]] == ["system", "user", "c1"]
        assert report["segments"][2]["note"] == "none"
