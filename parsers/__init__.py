"""
Spreadsheet parsing: column inference, cell extraction, status classification.
"""

from parsers.sheet_schema import (
    infer_column_map,
    resolve_headers,
    HeaderLayout,
    CANONICAL_FIELDS,
)
from parsers.cell_extractor import (
    extract_string,
    extract_number,
    extract_date,
    capture_raw_fields,
    is_blank_row,
)
from parsers.status_classifier import (
    classify_status,
    StatusTally,
    STATUS_SYNONYMS,
    STATUS_KEYWORDS,
)
from parsers.order_row_parser import (
    parse_order_row,
    ParsedOrderRow,
    sheet_line,
)

__all__ = [
    "infer_column_map",
    "resolve_headers",
    "HeaderLayout",
    "CANONICAL_FIELDS",
    "extract_string",
    "extract_number",
    "extract_date",
    "capture_raw_fields",
    "is_blank_row",
    "classify_status",
    "StatusTally",
    "STATUS_SYNONYMS",
    "STATUS_KEYWORDS",
    "parse_order_row",
    "ParsedOrderRow",
    "sheet_line",
]
