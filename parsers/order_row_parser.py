"""
Grid row to order field parser.

Pulls canonical order fields out of one sheet row using the inferred column
map. Identity (row key, external id) is resolved later by the identity
resolver; this module only reports the raw order number, if any.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from models.sheet import Cell
from parsers.cell_extractor import (
    capture_raw_fields,
    extract_date,
    extract_number,
    extract_string,
)
from parsers.status_classifier import StatusTally
from utils.text_utils import normalize_text, clean_text

# Grid row i sits on sheet line i + 2 (line 1 holds the headers).
SHEET_LINE_OFFSET = 2


@dataclass
class ParsedOrderRow:
    """Canonical fields of one sheet row."""
    line_number: int
    order_number: str
    order_date: datetime
    client_name: str = ""
    client_phone: str = ""
    city: str = ""
    address: str = ""
    product: str = ""
    quantity: int = 1
    price: float = 0.0
    status: str = "pending"
    raw_status: str = ""
    notes: str = ""
    raw_data: dict[str, str] = field(default_factory=dict)

    @property
    def has_order_number(self) -> bool:
        """True when the order id column gave a genuinely non-empty value."""
        return bool(self.order_number.strip())


def sheet_line(grid_index: int) -> int:
    """Sheet line number of a grid row index."""
    return grid_index + SHEET_LINE_OFFSET


def find_status_in_raw(raw_data: dict[str, str]) -> str:
    """Status value from a raw header that looks like a status column."""
    for header, value in raw_data.items():
        key = normalize_text(header)
        if "statut" in key or "status" in key or "etat" in key or key == "state":
            if value:
                return value
    return ""


def parse_order_row(
    row: list[Optional[Cell]],
    grid_index: int,
    headers: list[str],
    column_map: dict[str, int],
    tally: StatusTally,
    now: Callable[[], datetime] = datetime.now,
) -> ParsedOrderRow:
    """
    Parse one non-blank grid row.

    Row-level problems never raise: bad numbers become 0, bad dates become
    now(), unknown statuses become pending and are recorded on the tally.

    Args:
        row: Cells of the row
        grid_index: Index of the row in the grid
        headers: Resolved header labels
        column_map: Field name to column index
        tally: Status diagnostics for the run
        now: Clock for date fallback

    Returns:
        ParsedOrderRow
    """
    def text(field_name: str) -> str:
        return extract_string(row, column_map.get(field_name))

    raw_data = capture_raw_fields(headers, row)

    raw_status = text("status")
    if not raw_status:
        raw_status = find_status_in_raw(raw_data)
    status = tally.classify(raw_status)

    address = clean_text(text("address"), max_length=500)
    city = clean_text(text("city")) or address

    quantity = int(extract_number(row, column_map.get("quantity"))) or 1

    return ParsedOrderRow(
        line_number=sheet_line(grid_index),
        order_number=clean_text(text("order_id")),
        order_date=extract_date(row, column_map.get("date"), now=now),
        client_name=clean_text(text("client_name")),
        client_phone=clean_text(text("client_phone"), max_length=50),
        city=city,
        address=address,
        product=clean_text(text("product")),
        quantity=quantity,
        price=extract_number(row, column_map.get("price")),
        status=status.value,
        raw_status=raw_status,
        notes=clean_text(text("notes"), max_length=2000),
        raw_data=raw_data,
    )
