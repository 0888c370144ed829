"""
Raw spreadsheet structures returned by the source fetch.

A grid is column labels plus rows of cells. Each cell carries the raw value
and, when the sheet provides one, its pre-formatted display string.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class Cell:
    """One spreadsheet cell."""
    value: Any = None
    formatted: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        """True when the raw value is missing or falsy ("" / 0 / None)."""
        return not self.value


@dataclass
class SheetGrid:
    """Tabular payload of one sheet."""
    column_labels: list[str] = field(default_factory=list)
    rows: list[list[Optional[Cell]]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)
