"""Tests for 1-based line editing."""

from __future__ import annotations

import pytest

from fishwallet.utils.lines import insert_lines, number_lines, remove_lines, replace_lines

TEXT = "a\nb\nc"


def test_number_lines() -> None:
    assert number_lines(TEXT) == "  1 | a\n  2 | b\n  3 | c"
    assert number_lines("") == ""


def test_replace_lines_can_grow_the_range() -> None:
    assert replace_lines(TEXT, 2, 2, "x\ny") == "a\nx\ny\nc"


def test_insert_lines_at_top_and_bottom() -> None:
    assert insert_lines(TEXT, 0, "top") == "top\na\nb\nc"
    assert insert_lines(TEXT, 3, "end") == "a\nb\nc\nend"


def test_remove_lines() -> None:
    assert remove_lines(TEXT, 1, 2) == "c"


@pytest.mark.parametrize("start,end", [(0, 1), (2, 1), (1, 4)])
def test_invalid_ranges(start, end) -> None:
    with pytest.raises(ValueError, match="Invalid line range"):
        replace_lines(TEXT, start, end, "x")


def test_insert_position_out_of_range() -> None:
    with pytest.raises(ValueError):
        insert_lines(TEXT, 5, "x")
