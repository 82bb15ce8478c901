"""
Utility functions for call-sync.

Includes time helpers, sheet column arithmetic and transcript formatting.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, TypeVar, Union

T = TypeVar("T")

SPEAKERS = {"assistant": "Assistant", "user": "Customer", "agent-action": "System"}


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def parse_datetime(dt: Union[str, datetime]) -> datetime:
    """Parse datetime from string or return datetime object."""
    if isinstance(dt, str):
        parsed = datetime.fromisoformat(dt.replace("Z", "+00:00"))
    else:
        parsed = dt
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size <= 0:
        raise ValueError("size must be > 0")
    for i in range(0, len(items), size):
        yield list(items[i : i + size])


def column_letter(index: int) -> str:
    """0-based column index -> spreadsheet column letters (0 -> A, 26 -> AA)."""
    if index < 0:
        raise ValueError("index must be >= 0")
    letters = ""
    n = index + 1
    while n:
        n, rem = divmod(n - 1, 26)
        letters = chr(65 + rem) + letters
    return letters


def format_transcript(transcripts: Optional[Iterable[Dict[str, Any]]]) -> str:
    """
    Render transcript fragments as ``[HH:MM:SS] Speaker: text`` lines.

    Fragments are sorted by their ``created_at`` timestamp; unknown speakers
    keep their raw label.
    """
    if not transcripts:
        return ""
    fragments = sorted(transcripts, key=lambda t: parse_datetime(t["created_at"]))
    lines = []
    for t in fragments:
        ts = parse_datetime(t["created_at"]).strftime("%H:%M:%S")
        speaker = SPEAKERS.get(t.get("user", ""), t.get("user", ""))
        lines.append(f"[{ts}] {speaker}: {t.get('text', '')}")
    return "\n".join(lines)


def to_float(value: Any) -> float:
    """Lenient float parse for sheet cells; blanks and garbage count as 0."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def column_index(letters: str) -> int:
    """Spreadsheet column letters -> 0-based index (A -> 0, AA -> 26)."""
    if not letters or not letters.isalpha():
        raise ValueError(f"invalid column letters: {letters!r}")
    n = 0
    for ch in letters.upper():
        n = n * 26 + (ord(ch) - 64)
    return n - 1


def parse_a1(ref: str) -> Tuple[int, int]:
    """Top-left cell of an A1 range as (0-based column, 1-based row).

    ``E5:K5`` -> (4, 5); a column-only range such as ``A:K`` starts at row 1.
    """
    start = ref.split("!")[-1].split(":")[0]
    letters = start.rstrip("0123456789")
    digits = start[len(letters):]
    return column_index(letters), int(digits) if digits else 1
