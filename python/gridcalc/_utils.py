"""A1-notation helpers shared by the grid and the expression parser."""

from __future__ import annotations

import re

_A1_RE = re.compile(r"^\$?([A-Za-z]{1,3})\$?([1-9][0-9]*)$")


def column_to_letter(col: int) -> str:
    """Convert a 1-based column index to its letters (1 -> "A", 27 -> "AA")."""
    if col < 1:
        raise ValueError(f"Column index must be positive, got {col}")
    chunks: list[str] = []
    current = col
    while current > 0:
        current -= 1
        chunks.append(chr(ord("A") + (current % 26)))
        current //= 26
    return "".join(reversed(chunks))


def letter_to_column(letters: str) -> int:
    """Convert column letters to a 1-based index ("A" -> 1, "AA" -> 27)."""
    normalized = letters.strip().upper()
    if not normalized or not normalized.isalpha():
        raise ValueError(f"Invalid column letters: {letters!r}")
    index = 0
    for ch in normalized:
        index = index * 26 + (ord(ch) - ord("A") + 1)
    return index


def a1_to_rowcol(ref: str) -> tuple[int, int]:
    """Parse ``"B3"`` (dollar signs allowed) into 1-based ``(row, col)``."""
    m = _A1_RE.match(ref.strip())
    if not m:
        raise ValueError(f"Invalid cell reference: {ref!r}")
    return int(m.group(2)), letter_to_column(m.group(1))


def rowcol_to_a1(row: int, col: int) -> str:
    """Format 1-based ``(row, col)`` as A1 text."""
    if row < 1:
        raise ValueError(f"Row index must be positive, got {row}")
    return f"{column_to_letter(col)}{row}"
