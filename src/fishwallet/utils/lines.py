"""1-based line editing helpers shared by the synthesis and file tools."""

from __future__ import annotations

__all__ = ["split_lines", "number_lines", "replace_lines", "insert_lines", "remove_lines"]


def split_lines(content: str) -> list[str]:
    return content.split("\n")


def number_lines(content: str, *, width: int = 3) -> str:
    """Prefix each line with its 1-based number, e.g. ``"  1 | text"``."""
    if not content:
        return ""
    return "\n".join(f"{index:>{width}} | {line}" for index, line in enumerate(split_lines(content), start=1))


def _check_range(lines: list[str], start_line: int, end_line: int) -> None:
    if start_line < 1 or end_line > len(lines) or start_line > end_line:
        raise ValueError(
            f"Invalid line range {start_line}-{end_line}. Content has {len(lines)} lines."
        )


def replace_lines(content: str, start_line: int, end_line: int, new_content: str) -> str:
    """Replace the inclusive range ``start_line..end_line`` with ``new_content``.

    Raises:
        ValueError: If the range falls outside the content.
    """
    lines = split_lines(content)
    _check_range(lines, start_line, end_line)
    lines[start_line - 1 : end_line] = split_lines(new_content)
    return "\n".join(lines)


def insert_lines(content: str, after_line: int, new_content: str) -> str:
    """Insert ``new_content`` after ``after_line`` (``0`` inserts at the top)."""
    lines = split_lines(content)
    if after_line < 0 or after_line > len(lines):
        raise ValueError(f"Invalid position {after_line}. Content has {len(lines)} lines.")
    lines[after_line:after_line] = split_lines(new_content)
    return "\n".join(lines)


def remove_lines(content: str, start_line: int, end_line: int) -> str:
    lines = split_lines(content)
    _check_range(lines, start_line, end_line)
    del lines[start_line - 1 : end_line]
    return "\n".join(lines)
