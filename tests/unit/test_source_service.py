"""
Unit tests for the sheet source registry.

Run: pytest tests/unit/test_source_service.py -v
"""

import pytest

from exceptions import InvalidSourceReferenceError, SourceNotFoundError
from models.source import SheetSourceCreate, SheetSourceUpdate
from services.source_service import SheetSourceService
from tests.factories import SPREADSHEET_ID, SourceFactory

SHEET_URL = f"https://docs.google.com/spreadsheets/d/{SPREADSHEET_ID}/edit#gid=0"


class TestSourceReads:
    """Tests for listing and lookup."""

    def test_list_sources_by_workspace(self, mock_db):
        """Should only list the workspace's own sources."""
        mock_db.seed("sheet_sources", [
            SourceFactory.create(workspace_id="ws-1"),
            SourceFactory.create(workspace_id="ws-1"),
            SourceFactory.create(workspace_id="ws-2"),
        ])

        sources = SheetSourceService().list_sources("ws-1")

        assert len(sources) == 2
        assert all(s.workspace_id == "ws-1" for s in sources)

    def test_list_active_sources(self, mock_db):
        """Should list active sources across workspaces."""
        mock_db.seed("sheet_sources", [
            SourceFactory.create(workspace_id="ws-1"),
            SourceFactory.create(workspace_id="ws-2"),
            SourceFactory.create(workspace_id="ws-2", is_active=False),
        ])

        assert len(SheetSourceService().list_active_sources()) == 2

    def test_get_missing(self, mock_db):
        """Should raise SourceNotFoundError."""
        with pytest.raises(SourceNotFoundError):
            SheetSourceService().get_by_id("ws-1", "missing")

    def test_null_metadata_normalized(self, mock_db):
        """Should read NULL headers and column map as empty."""
        mock_db.seed("sheet_sources", [
            SourceFactory.create(id="src-1", detected_headers=None, detected_columns=None)
        ])

        source = SheetSourceService().get_by_id("ws-1", "src-1")

        assert source.detected_headers == []
        assert source.detected_columns == {}


class TestSourceWrites:
    """Tests for create, update and run metadata."""

    def test_create_with_url(self, mock_db):
        """Should accept a full sheet URL."""
        source = SheetSourceService().create(
            "ws-1", SheetSourceCreate(name="Boutique", spreadsheet_id=SHEET_URL)
        )

        assert source.workspace_id == "ws-1"
        assert source.sheet_name == "Sheet1"
        assert source.is_active is True
        assert len(mock_db.all("sheet_sources")) == 1

    def test_create_invalid_reference(self, mock_db):
        """Should reject a reference that is not a spreadsheet."""
        with pytest.raises(InvalidSourceReferenceError):
            SheetSourceService().create(
                "ws-1", SheetSourceCreate(name="Boutique", spreadsheet_id="https://example.com/sheet")
            )

        assert mock_db.all("sheet_sources") == []

    def test_update_partial(self, mock_db):
        """Should only change the given fields."""
        mock_db.seed("sheet_sources", [SourceFactory.create(id="src-1", name="Old")])

        source = SheetSourceService().update("ws-1", "src-1", SheetSourceUpdate(is_active=False))

        assert source.is_active is False
        assert source.name == "Old"

    def test_update_invalid_reference(self, mock_db):
        """Should reject an unusable new reference."""
        mock_db.seed("sheet_sources", [SourceFactory.create(id="src-1")])

        with pytest.raises(InvalidSourceReferenceError):
            SheetSourceService().update("ws-1", "src-1", SheetSourceUpdate(spreadsheet_id="nope"))

    def test_update_missing(self, mock_db):
        """Should raise SourceNotFoundError for an unknown source."""
        with pytest.raises(SourceNotFoundError):
            SheetSourceService().update("ws-1", "missing", SheetSourceUpdate(name="x"))

    def test_record_sync_keeps_schema_on_failure(self, mock_db):
        """Should keep the previous headers when none are given."""
        mock_db.seed("sheet_sources", [
            SourceFactory.create(id="src-1", detected_headers=["Nom"], detected_columns={"client_name": 0})
        ])
        service = SheetSourceService()

        service.record_sync("ws-1", "src-1", status="failed", error="HTTP 403")

        source = service.get_by_id("ws-1", "src-1")
        assert source.last_sync_status == "failed"
        assert source.last_sync_error == "HTTP 403"
        assert source.last_sync_at is not None
        assert source.detected_headers == ["Nom"]
        assert source.detected_columns == {"client_name": 0}

    def test_record_sync_drops_blank_headers(self, mock_db):
        """Should store only non-blank header labels."""
        mock_db.seed("sheet_sources", [SourceFactory.create(id="src-1")])
        service = SheetSourceService()

        service.record_sync("ws-1", "src-1", status="done", headers=["Nom", "", "Statut"], column_map={})

        assert service.get_by_id("ws-1", "src-1").detected_headers == ["Nom", "Statut"]
