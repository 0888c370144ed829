"""
Unit tests for order status classification.

Run: pytest tests/unit/test_status_classifier.py -v
"""

import pytest

from models.order import OrderStatus
from parsers.status_classifier import (
    STATUS_SYNONYMS,
    StatusTally,
    classify,
    classify_status,
)
from utils.text_utils import strip_accents


class TestClassifySynonyms:
    """Tests for the exact synonym dictionary."""

    @pytest.mark.parametrize("raw,expected", [
        ("En attente", OrderStatus.PENDING),
        ("Nouveau", OrderStatus.PENDING),
        ("Confirmé", OrderStatus.CONFIRMED),
        ("Validé", OrderStatus.CONFIRMED),
        ("Expédié", OrderStatus.SHIPPED),
        ("En cours de livraison", OrderStatus.SHIPPED),
        ("Livré", OrderStatus.DELIVERED),
        ("Reçu", OrderStatus.DELIVERED),
        ("Retour", OrderStatus.RETURNED),
        ("Remboursé", OrderStatus.RETURNED),
        ("Annulé", OrderStatus.CANCELLED),
        ("Refusé", OrderStatus.CANCELLED),
        ("Injoignable", OrderStatus.UNREACHABLE),
        ("Pas de réponse", OrderStatus.UNREACHABLE),
        ("Appelé", OrderStatus.CALLED),
        ("Reporté", OrderStatus.POSTPONED),
        ("Plus tard", OrderStatus.POSTPONED),
        ("delivered", OrderStatus.DELIVERED),
        ("cancelled", OrderStatus.CANCELLED),
    ])
    def test_synonym(self, raw, expected):
        """Should map each synonym to its canonical status."""
        assert classify_status(raw) == expected

    @pytest.mark.parametrize("raw", ["LIVRÉ", "livre", "  Livré  ", "LiVrE"])
    def test_case_accents_and_whitespace_ignored(self, raw):
        """Should classify any case, with or without accents."""
        assert classify(raw).status == OrderStatus.DELIVERED
        assert classify(raw).recognized is True

    def test_every_synonym_recognized_without_accents(self):
        """Should classify every dictionary entry typed without accents."""
        for key, status in STATUS_SYNONYMS.items():
            assert classify_status(strip_accents(key).upper()) == status


class TestClassifyKeywords:
    """Tests for the keyword fallback."""

    @pytest.mark.parametrize("raw,expected", [
        ("Commande confirmée par tel", OrderStatus.CONFIRMED),
        ("livraison demain", OrderStatus.SHIPPED),
        ("Colis livré au client", OrderStatus.DELIVERED),
        ("annulée par le client", OrderStatus.CANCELLED),
        ("client injoignable 2x", OrderStatus.UNREACHABLE),
        ("à rappeler", OrderStatus.CALLED),
        ("report semaine prochaine", OrderStatus.POSTPONED),
    ])
    def test_keyword(self, raw, expected):
        """Should fall back to substring keywords."""
        result = classify(raw)

        assert result.status == expected
        assert result.recognized is True

    def test_group_order_decides_ties(self):
        """Should let the earlier group win when two keywords match."""
        # "attente" (pending) is checked before "livraison" (shipped)
        assert classify_status("attente livraison") == OrderStatus.PENDING


class TestClassifyDefaults:
    """Tests for empty and unknown values."""

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_empty_is_pending_and_recognized(self, raw):
        """Should treat an empty status as pending, not unrecognized."""
        result = classify(raw)

        assert result.status == OrderStatus.PENDING
        assert result.recognized is True

    def test_unknown_is_pending_and_unrecognized(self):
        """Should default unknown text to pending and flag it."""
        result = classify("xyz")

        assert result.status == OrderStatus.PENDING
        assert result.recognized is False


class TestStatusTally:
    """Tests for per-run status diagnostics."""

    def test_counts_and_unrecognized(self):
        """Should count statuses and list distinct unrecognized values."""
        tally = StatusTally()

        for raw in ["Livré", "livre", "xyz", "xyz", "Annulé", "", "foo"]:
            tally.classify(raw)

        assert tally.counts == {"delivered": 2, "pending": 4, "cancelled": 1}
        assert tally.unrecognized_count == 3
        assert tally.unrecognized == ["xyz", "foo"]
        assert tally.distinct_unrecognized == {"xyz", "foo"}
