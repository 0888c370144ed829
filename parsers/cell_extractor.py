"""
Typed value extraction from spreadsheet cells.

Cells arrive as a raw value plus an optional display string. Nothing here
raises: a value that cannot be read degrades to a safe default so one bad
cell never aborts its row.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Optional
import math
import re

from models.sheet import Cell

# Spreadsheet serial dates count days from this epoch.
SERIAL_EPOCH = datetime(1899, 12, 30)
SERIAL_MIN = 10000
SERIAL_MAX = 100000

# Visualization API date literal; the month is 0-based.
DATE_LITERAL_RE = re.compile(r"Date\(\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)")
LEADING_NUMBER_RE = re.compile(r"^\s*([+-]?(?:\d+(?:[.,]\d*)?|[.,]\d+)(?:[eE][+-]?\d+)?)")
DATE_SEPARATORS_RE = re.compile(r"[/\-.]")


def cell_text(cell: Optional[Cell]) -> str:
    """Formatted representation first, then the raw value stringified."""
    if cell is None:
        return ""
    if cell.formatted:
        return cell.formatted
    value = cell.value
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def extract_string(row: list[Optional[Cell]], index: Optional[int]) -> str:
    """String value of the cell at index, "" when unmapped or absent."""
    return cell_text(_cell_at(row, index))


def _parse_float(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0

    try:
        if isinstance(value, (int, float)):
            result = float(value)
        else:
            match = LEADING_NUMBER_RE.match(str(value))
            if not match:
                return 0.0
            result = float(match.group(1).replace(",", "."))
    except (ValueError, OverflowError):
        return 0.0

    # Overflow and NaN degrade to 0
    return result if math.isfinite(result) else 0.0


def extract_number(row: list[Optional[Cell]], index: Optional[int]) -> float:
    """Numeric value of the raw cell, 0 when unmapped or unparseable."""
    cell = _cell_at(row, index)
    if cell is None:
        return 0.0
    return _parse_float(cell.value)


def _parse_date_literal(value: str) -> Optional[datetime]:
    match = DATE_LITERAL_RE.search(value)
    if not match:
        return None
    year, month, day = (int(g) for g in match.groups())
    try:
        return datetime(year, month + 1, day)
    except ValueError:
        return None


def _parse_serial(value: float) -> Optional[datetime]:
    if SERIAL_MIN < value < SERIAL_MAX:
        return SERIAL_EPOCH + timedelta(days=value)
    return None


def parse_flexible_date(text: str) -> Optional[datetime]:
    """
    Parse free-text dates.

    ISO-like strings first, then day/month/year with "/", "-" or "."
    separators. Two-digit years are read as 2000+.

    Returns:
        Parsed datetime, or None when nothing fits
    """
    text = (text or "").strip()
    if not text:
        return None

    try:
        parsed = datetime.fromisoformat(text)
        return parsed.replace(tzinfo=None)
    except ValueError:
        pass

    parts = DATE_SEPARATORS_RE.split(text)
    if len(parts) != 3:
        return None

    try:
        day, month = int(parts[0]), int(parts[1])
        # Year may carry a time suffix ("2024 14:30")
        year = int(parts[2].strip().split()[0])
    except (ValueError, IndexError):
        return None

    if day > 31 or month > 12:
        return None
    if year < 100:
        year += 2000

    try:
        return datetime(year, month, day)
    except ValueError:
        return None


def extract_date(
    row: list[Optional[Cell]],
    index: Optional[int],
    now: Callable[[], datetime] = datetime.now,
) -> datetime:
    """
    Date value of the cell at index.

    Tries the Date(y,m,d) literal, then a serial day count, then free text
    (formatted string first). Falls back to now().
    """
    cell = _cell_at(row, index)
    if cell is None:
        return now()

    value = cell.value
    if isinstance(value, str) and value.startswith("Date("):
        parsed = _parse_date_literal(value)
        if parsed:
            return parsed

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = _parse_serial(float(value))
        if parsed:
            return parsed

    parsed = parse_flexible_date(cell_text(cell))
    if parsed is None and cell.formatted and isinstance(value, str):
        parsed = parse_flexible_date(value)
    return parsed or now()


def capture_raw_fields(headers: list[str], row: list[Optional[Cell]]) -> dict[str, str]:
    """
    Every header/cell pair with a non-empty header and a present cell.

    Keeps columns that no canonical field claimed.
    """
    raw: dict[str, str] = {}
    for index, header in enumerate(headers):
        if not header:
            continue
        cell = _cell_at(row, index)
        if cell is None:
            continue
        raw[header] = cell_text(cell)
    return raw


def is_blank_row(row: Optional[list[Optional[Cell]]]) -> bool:
    """True when every cell is absent or has an empty raw value."""
    if not row:
        return True
    return all(cell is None or cell.is_empty for cell in row)


def _cell_at(row: list[Optional[Cell]], index: Optional[int]) -> Optional[Cell]:
    if index is None or index < 0 or index >= len(row):
        return None
    return row[index]
