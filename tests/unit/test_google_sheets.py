"""
Unit tests for the Google Sheets client.

Run: pytest tests/unit/test_google_sheets.py -v
"""

from unittest.mock import MagicMock, patch
import json
import pytest
import requests

from exceptions import SheetFetchError
from integrations.google_sheets import (
    GoogleSheetsClient,
    extract_spreadsheet_id,
    parse_visualization_response,
)
from tests.factories import SPREADSHEET_ID


def wrap(payload: dict) -> str:
    return (
        "/*O_o*/\n"
        f"google.visualization.Query.setResponse({json.dumps(payload)});"
    )


TABLE_PAYLOAD = {
    "version": "0.6",
    "status": "ok",
    "table": {
        "cols": [
            {"id": "A", "label": "Nom", "type": "string"},
            {"id": "B", "label": "Date", "type": "date"},
            {"id": "C", "label": "", "type": "number"},
        ],
        "rows": [
            {"c": [{"v": "Awa"}, {"v": "Date(2024,11,25)", "f": "25/12/2024"}, {"v": 5000.0, "f": "5 000"}]},
            {"c": [None, {"v": None}, {"v": 2}]},
            {"c": []},
        ],
    },
}


class TestExtractSpreadsheetId:
    """Tests for extract_spreadsheet_id."""

    def test_bare_id(self):
        """Should accept a bare spreadsheet id."""
        assert extract_spreadsheet_id(SPREADSHEET_ID) == SPREADSHEET_ID

    def test_url(self):
        """Should extract the id from a sheet URL."""
        url = f"https://docs.google.com/spreadsheets/d/{SPREADSHEET_ID}/edit#gid=0"

        assert extract_spreadsheet_id(url) == SPREADSHEET_ID

    @pytest.mark.parametrize("reference", [None, "", "abc", "https://example.com/x"])
    def test_invalid(self, reference):
        """Should return None for unusable references."""
        assert extract_spreadsheet_id(reference) is None


class TestParseVisualizationResponse:
    """Tests for parse_visualization_response."""

    def test_parses_table(self):
        """Should read labels and cells, keeping absent cells as None."""
        grid = parse_visualization_response(wrap(TABLE_PAYLOAD))

        assert grid.column_labels == ["Nom", "Date", ""]
        assert grid.row_count == 3
        assert grid.rows[0][1].value == "Date(2024,11,25)"
        assert grid.rows[0][1].formatted == "25/12/2024"
        assert grid.rows[1][0] is None
        assert grid.rows[1][1].value is None
        assert grid.rows[2] == []

    def test_missing_wrapper(self):
        """Should reject a body without the callback wrapper."""
        with pytest.raises(SheetFetchError):
            parse_visualization_response("<html>Sign in</html>")

    def test_bad_json(self):
        """Should reject malformed JSON."""
        with pytest.raises(SheetFetchError):
            parse_visualization_response("google.visualization.Query.setResponse({not json});")

    def test_error_status(self):
        """Should surface the error reported by the endpoint."""
        body = wrap({"status": "error", "errors": [{"reason": "invalid_query", "detailed_message": "Invalid sheet"}]})

        with pytest.raises(SheetFetchError) as exc:
            parse_visualization_response(body)

        assert "Invalid sheet" in exc.value.message

    @pytest.mark.parametrize("rows", [
        [{"c": ["Awa", {"v": 1}]}],
        [{"c": [[1, 2]]}],
        ["Awa"],
        [{"c": "Awa"}],
    ])
    def test_malformed_rows(self, rows):
        """Should raise SheetFetchError for rows or cells of the wrong shape."""
        body = wrap({"status": "ok", "table": {"cols": [{"label": "Nom"}], "rows": rows}})

        with pytest.raises(SheetFetchError):
            parse_visualization_response(body)

    def test_non_object_payload(self):
        """Should raise SheetFetchError when the payload is not an object."""
        with pytest.raises(SheetFetchError):
            parse_visualization_response("google.visualization.Query.setResponse([1, 2]);")

    def test_missing_table(self):
        """Should reject a response without a table."""
        with pytest.raises(SheetFetchError):
            parse_visualization_response(wrap({"status": "ok"}))


class TestFetchGrid:
    """Tests for GoogleSheetsClient.fetch_grid."""

    def test_builds_url(self):
        """Should request the JSON export of the named tab."""
        client = GoogleSheetsClient(base_url="https://docs.google.com/spreadsheets/d/")

        url = client.build_url(SPREADSHEET_ID, "Commandes Mars")

        assert url == (
            f"https://docs.google.com/spreadsheets/d/{SPREADSHEET_ID}/gviz/tq"
            "?tqx=out:json&sheet=Commandes%20Mars"
        )

    def test_fetch_success(self):
        """Should return the parsed grid."""
        response = MagicMock(ok=True, status_code=200, text=wrap(TABLE_PAYLOAD))

        with patch("integrations.google_sheets.requests.get", return_value=response) as get:
            grid = GoogleSheetsClient(timeout=5).fetch_grid(SPREADSHEET_ID, "Sheet1")

        assert grid.column_labels[0] == "Nom"
        assert get.call_args.kwargs["timeout"] == 5

    def test_http_error(self):
        """Should raise SheetFetchError on a refused request."""
        response = MagicMock(ok=False, status_code=403, text="")

        with patch("integrations.google_sheets.requests.get", return_value=response):
            with pytest.raises(SheetFetchError) as exc:
                GoogleSheetsClient().fetch_grid(SPREADSHEET_ID)

        assert "403" in exc.value.message
        assert exc.value.status_code == 503

    def test_network_error(self):
        """Should raise SheetFetchError when the host is unreachable."""
        with patch(
            "integrations.google_sheets.requests.get",
            side_effect=requests.exceptions.ConnectionError("DNS failure"),
        ):
            with pytest.raises(SheetFetchError):
                GoogleSheetsClient().fetch_grid(SPREADSHEET_ID)
