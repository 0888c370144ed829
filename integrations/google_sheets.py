"""
Google Sheets integration for reading order sheets.

Reads a sheet tab through the public visualization endpoint, which returns
JSON wrapped in a JavaScript callback. The sheet must be shared with "anyone
with the link".
"""

from typing import Any, Optional
from urllib.parse import quote
import json
import re
import requests
import structlog

from config import settings
from exceptions import SheetFetchError
from models.sheet import Cell, SheetGrid

logger = structlog.get_logger(__name__)


SPREADSHEET_ID_RE = re.compile(r"^[a-zA-Z0-9_-]{20,}$")
SPREADSHEET_URL_RE = re.compile(r"/spreadsheets/d/([a-zA-Z0-9_-]+)")
RESPONSE_WRAPPER_RE = re.compile(
    r"google\.visualization\.Query\.setResponse\((.+)\);?\s*$",
    re.DOTALL
)


def extract_spreadsheet_id(reference: Optional[str]) -> Optional[str]:
    """
    Extract the spreadsheet id from a bare id or a full sheet URL.

    Args:
        reference: Stored location reference

    Returns:
        Spreadsheet id, or None when the reference is not usable
    """
    if not reference:
        return None

    reference = reference.strip()
    if SPREADSHEET_ID_RE.match(reference):
        return reference

    match = SPREADSHEET_URL_RE.search(reference)
    return match.group(1) if match else None


def parse_visualization_response(text: str) -> SheetGrid:
    """
    Parse a visualization endpoint body into a grid.

    Raises:
        SheetFetchError: If the body is not a usable table response
    """
    match = RESPONSE_WRAPPER_RE.search(text.strip())
    if not match:
        raise SheetFetchError("Invalid response format from Google Sheets")

    try:
        payload = json.loads(match.group(1))
    except json.JSONDecodeError as e:
        raise SheetFetchError(
            "Invalid JSON in Google Sheets response",
            details={"original_error": str(e)}
        )

    if not isinstance(payload, dict):
        raise SheetFetchError("Google Sheets response is not an object")

    if payload.get("status") == "error":
        errors = payload.get("errors") or []
        reason = errors[0].get("detailed_message") or errors[0].get("message") if errors else None
        raise SheetFetchError(
            f"Google Sheets returned an error: {reason or 'unknown'}",
            details={"errors": errors}
        )

    table = payload.get("table")
    if not isinstance(table, dict):
        raise SheetFetchError("Google Sheets response has no table")

    cols = table.get("cols") or []
    if not isinstance(cols, list) or not all(col is None or isinstance(col, dict) for col in cols):
        raise SheetFetchError("Google Sheets response has malformed columns")

    labels = [(col or {}).get("label") or "" for col in cols]
    rows = [_parse_row(index, row) for index, row in enumerate(table.get("rows") or [])]

    return SheetGrid(column_labels=labels, rows=rows)


def _parse_row(index: int, row: Any) -> list[Optional[Cell]]:
    if not row:
        return []
    cells = row.get("c") if isinstance(row, dict) else None
    if not isinstance(row, dict) or not isinstance(cells, (list, type(None))):
        raise SheetFetchError("Google Sheets response has a malformed row", details={"row": index})

    parsed = []
    for cell in cells or []:
        if cell is None:
            parsed.append(None)
        elif isinstance(cell, dict):
            parsed.append(Cell(value=cell.get("v"), formatted=cell.get("f")))
        else:
            raise SheetFetchError("Google Sheets response has a malformed cell", details={"row": index})
    return parsed


class GoogleSheetsClient:
    """Fetches sheet tabs as grids of typed cells."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self.base_url = (base_url or settings.sheets_base_url).rstrip("/")
        self.timeout = timeout or settings.sheets_fetch_timeout_seconds

    def build_url(self, spreadsheet_id: str, sheet_name: str) -> str:
        return (
            f"{self.base_url}/{spreadsheet_id}/gviz/tq"
            f"?tqx=out:json&sheet={quote(sheet_name, safe='')}"
        )

    def fetch_grid(self, spreadsheet_id: str, sheet_name: str = "Sheet1") -> SheetGrid:
        """
        Fetch one sheet tab.

        No retry: a failed fetch fails the run.

        Args:
            spreadsheet_id: Spreadsheet id (already extracted)
            sheet_name: Tab name

        Returns:
            SheetGrid with column labels and rows

        Raises:
            SheetFetchError: On network errors, HTTP errors or malformed bodies
        """
        url = self.build_url(spreadsheet_id, sheet_name)
        logger.info("fetching_sheet", spreadsheet_id=spreadsheet_id, sheet_name=sheet_name)

        try:
            response = requests.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error("sheet_request_failed", spreadsheet_id=spreadsheet_id, error=str(e))
            raise SheetFetchError(
                f"Could not reach Google Sheets: {str(e)}",
                details={"spreadsheet_id": spreadsheet_id}
            )

        if not response.ok:
            logger.error(
                "sheet_http_error",
                spreadsheet_id=spreadsheet_id,
                status_code=response.status_code
            )
            raise SheetFetchError(
                f"HTTP {response.status_code}: access to the sheet was refused",
                details={"spreadsheet_id": spreadsheet_id, "status_code": response.status_code}
            )

        grid = parse_visualization_response(response.text)

        logger.info(
            "sheet_fetched",
            spreadsheet_id=spreadsheet_id,
            columns=len(grid.column_labels),
            rows=grid.row_count
        )
        return grid


# Singleton instance
_sheets_client: Optional[GoogleSheetsClient] = None


def get_sheets_client() -> GoogleSheetsClient:
    """Get or create GoogleSheetsClient singleton."""
    global _sheets_client
    if _sheets_client is None:
        _sheets_client = GoogleSheetsClient()
    return _sheets_client
