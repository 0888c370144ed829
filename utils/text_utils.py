"""
Text utilities for handling French/English spreadsheet text with accents.

Used for header matching and status classification.
"""

import unicodedata
from typing import Any, Optional


def strip_accents(text: str) -> str:
    """
    Remove diacritics, keeping the base characters.

    - "Quantité" → "Quantite"
    - "Reçu" → "Recu"
    """
    # NFD separates base chars from accents (combining marks, category 'Mn')
    decomposed = unicodedata.normalize('NFD', text)
    return ''.join(c for c in decomposed if unicodedata.category(c) != 'Mn')


def normalize_text(value: Optional[Any]) -> str:
    """
    Normalize free text for comparison.

    Lowercase, diacritics stripped, surrounding whitespace trimmed:
    - "  Statut Livraison " → "statut livraison"
    - "LIVRÉ" → "livre"

    Args:
        value: Raw text (may be None or a non-string cell value)

    Returns:
        Normalized string, "" for empty input
    """
    if value is None:
        return ""

    return strip_accents(str(value).lower()).strip()


def clean_text(value: Optional[str], max_length: int = 255) -> str:
    """
    Clean a value for storage (preserves accents).

    - Strips whitespace
    - Truncates to max length

    Args:
        value: Raw string from the sheet
        max_length: Maximum characters to store

    Returns:
        Cleaned string ("" for empty input)
    """
    if not value:
        return ""

    value = value.strip()

    if len(value) > max_length:
        value = value[:max_length]

    return value
