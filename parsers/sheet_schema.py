"""
Column mapping for free-text spreadsheet headers.

Maps arbitrary header labels (French/English, any case, with or without
accents) to canonical order fields. Inferred on every run; the map saved on
the source is an informational cache only.
"""

from dataclasses import dataclass, field
from typing import Optional
import structlog

from models.sheet import Cell, SheetGrid
from utils.text_utils import normalize_text

logger = structlog.get_logger(__name__)


# Canonical fields in priority order. Compound phrases are tried on every
# header before any simple token, so "Prix Unitaire" beats a bare "Prix".
FIELD_PATTERNS: list[tuple[str, list[str], list[str]]] = [
    (
        "order_id",
        ["order id", "order number", "numero commande", "n° commande"],
        ["order id", "ref", "reference"],
    ),
    (
        "date",
        ["date & time", "date time", "date commande"],
        ["date", "jour", "day", "created"],
    ),
    (
        "client_phone",
        ["phone number", "numero telephone", "num tel"],
        ["tel", "telephone", "phone", "mobile", "whatsapp"],
    ),
    (
        "client_name",
        ["first name", "last name", "full name", "nom complet", "nom client", "customer name"],
        ["nom", "name", "client", "prenom", "firstname", "lastname"],
    ),
    (
        "city",
        [],
        ["ville", "city", "commune", "localite", "zone"],
    ),
    (
        "product",
        ["product name", "nom produit", "nom article", "nom du produit"],
        ["produit", "product", "article", "item", "designation"],
    ),
    (
        "price",
        ["product price", "prix produit", "prix unitaire", "unit price", "selling price"],
        ["prix", "price", "montant", "amount", "total", "cout", "cost", "tarif"],
    ),
    (
        "quantity",
        [],
        ["quantite", "quantity", "qte", "qty", "nb", "nombre"],
    ),
    (
        "status",
        ["statut livraison", "statut commande", "delivery status", "order status"],
        ["statut", "status", "etat", "state"],
    ),
    (
        "notes",
        [],
        ["notes", "note", "commentaire", "comment", "remarque", "observation"],
    ),
    (
        "address",
        ["address 1", "adresse 1"],
        ["adresse", "address"],
    ),
]

CANONICAL_FIELDS = [name for name, _, _ in FIELD_PATTERNS]

# Rescan of unclaimed headers when no status column was found. Broader than
# the status tokens above so "Livraison" alone still counts here.
STATUS_HEADER_KEYWORDS = ["statut", "status", "etat", "state", "livraison", "delivery"]


@dataclass
class HeaderLayout:
    """Resolved header labels and the index of the first data row."""
    headers: list[str] = field(default_factory=list)
    data_start: int = 0

    @property
    def headerless(self) -> bool:
        return self.data_start > 0


def _matches(header: str, keywords: list[str]) -> bool:
    return any(normalize_text(k) in header for k in keywords)


def infer_column_map(headers: list[str]) -> dict[str, int]:
    """
    Map canonical field names to column indexes.

    Pass 1 matches compound phrases, pass 2 matches simple tokens on columns
    pass 1 left unclaimed. Each column feeds at most one field and each field
    takes the first column that matches. Unmatched fields are absent from the
    result.

    Args:
        headers: Header labels in column order (blanks allowed)

    Returns:
        Dict of field name to column index
    """
    normalized = [normalize_text(h) for h in headers]
    mapping: dict[str, int] = {}
    used: set[int] = set()

    # Pass 1: compound phrases
    for index, header in enumerate(normalized):
        if not header:
            continue
        for field_name, compound, _ in FIELD_PATTERNS:
            if field_name in mapping or not compound:
                continue
            if _matches(header, compound):
                mapping[field_name] = index
                used.add(index)
                break

    # Pass 2: simple tokens on unclaimed columns
    for index, header in enumerate(normalized):
        if not header or index in used:
            continue
        for field_name, _, simple in FIELD_PATTERNS:
            if field_name in mapping:
                continue
            if _matches(header, simple):
                mapping[field_name] = index
                used.add(index)
                break

    if "status" not in mapping:
        status_index = find_status_column(normalized, used)
        if status_index is not None:
            mapping["status"] = status_index
            logger.info(
                "status_column_found_by_fallback",
                index=status_index,
                header=headers[status_index]
            )
        else:
            logger.warning("status_column_not_found", headers=headers)

    logger.debug("column_map_inferred", mapping=mapping, headers=headers)
    return mapping


def find_status_column(normalized_headers: list[str], used: set[int]) -> Optional[int]:
    """Find the first unclaimed header that looks like a status column."""
    for index, header in enumerate(normalized_headers):
        if index in used or not header:
            continue
        if _matches(header, STATUS_HEADER_KEYWORDS):
            return index
    return None


def _cell_label(cell: Optional[Cell]) -> str:
    if cell is None:
        return ""
    if cell.formatted:
        return cell.formatted
    return str(cell.value) if cell.value is not None else ""


def resolve_headers(grid: SheetGrid) -> HeaderLayout:
    """
    Pick the header labels for a grid.

    When every column label is blank the first row holds the headers and the
    data starts one row later.
    """
    labels = [label or "" for label in grid.column_labels]
    if any(label.strip() for label in labels) or not grid.rows:
        return HeaderLayout(headers=labels, data_start=0)

    first_row = grid.rows[0]
    headers = [_cell_label(cell) for cell in first_row]
    # Pad so every column index has a label.
    if len(headers) < len(labels):
        headers.extend([""] * (len(labels) - len(headers)))

    logger.info("headerless_grid", headers=headers)
    return HeaderLayout(headers=headers, data_start=1)
