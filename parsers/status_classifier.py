"""
Free-text order status classification.

Two tiers: an exact synonym dictionary (French/English variants), then
ordered keyword groups matched as substrings. Anything else is "pending"
and tallied as unrecognized so operators can extend the vocabulary.
"""

from dataclasses import dataclass, field
from typing import Optional

from models.order import OrderStatus
from utils.text_utils import normalize_text


_SYNONYMS: dict[str, OrderStatus] = {
    # Pending
    "en attente": OrderStatus.PENDING,
    "pending": OrderStatus.PENDING,
    "nouveau": OrderStatus.PENDING,
    "new": OrderStatus.PENDING,
    "à traiter": OrderStatus.PENDING,
    "en cours": OrderStatus.PENDING,
    "processing": OrderStatus.PENDING,
    "en attente de paiement": OrderStatus.PENDING,
    "attente paiement": OrderStatus.PENDING,
    "en validation": OrderStatus.PENDING,

    # Confirmed
    "confirmé": OrderStatus.CONFIRMED,
    "confirmed": OrderStatus.CONFIRMED,
    "validé": OrderStatus.CONFIRMED,
    "accepté": OrderStatus.CONFIRMED,
    "approuvé": OrderStatus.CONFIRMED,

    # Shipped
    "expédié": OrderStatus.SHIPPED,
    "shipped": OrderStatus.SHIPPED,
    "envoyé": OrderStatus.SHIPPED,
    "en livraison": OrderStatus.SHIPPED,
    "en route": OrderStatus.SHIPPED,
    "en transit": OrderStatus.SHIPPED,
    "en cours de livraison": OrderStatus.SHIPPED,
    "transporté": OrderStatus.SHIPPED,

    # Delivered
    "livré": OrderStatus.DELIVERED,
    "delivered": OrderStatus.DELIVERED,
    "reçu": OrderStatus.DELIVERED,
    "livraison effectuée": OrderStatus.DELIVERED,
    "livraison terminée": OrderStatus.DELIVERED,
    "remis": OrderStatus.DELIVERED,
    "remis client": OrderStatus.DELIVERED,

    # Returned
    "retour": OrderStatus.RETURNED,
    "returned": OrderStatus.RETURNED,
    "retourné": OrderStatus.RETURNED,
    "retour client": OrderStatus.RETURNED,
    "retour marchandise": OrderStatus.RETURNED,
    "retour produit": OrderStatus.RETURNED,
    "remboursé": OrderStatus.RETURNED,
    "échange": OrderStatus.RETURNED,

    # Cancelled
    "annulé": OrderStatus.CANCELLED,
    "cancelled": OrderStatus.CANCELLED,
    "canceled": OrderStatus.CANCELLED,
    "abandonné": OrderStatus.CANCELLED,
    "refusé": OrderStatus.CANCELLED,
    "rejeté": OrderStatus.CANCELLED,

    # Unreachable
    "injoignable": OrderStatus.UNREACHABLE,
    "unreachable": OrderStatus.UNREACHABLE,
    "injoignabl": OrderStatus.UNREACHABLE,
    "non joignable": OrderStatus.UNREACHABLE,
    "non joignabl": OrderStatus.UNREACHABLE,
    "téléphone injoignable": OrderStatus.UNREACHABLE,
    "tel injoignable": OrderStatus.UNREACHABLE,
    "pas de réponse": OrderStatus.UNREACHABLE,
    "absence réponse": OrderStatus.UNREACHABLE,
    "client injoignable": OrderStatus.UNREACHABLE,
    "contact impossible": OrderStatus.UNREACHABLE,

    # Called
    "appelé": OrderStatus.CALLED,
    "called": OrderStatus.CALLED,
    "contacté": OrderStatus.CALLED,
    "appel effectué": OrderStatus.CALLED,
    "appel terminé": OrderStatus.CALLED,
    "client appelé": OrderStatus.CALLED,
    "tentative appel": OrderStatus.CALLED,

    # Postponed
    "reporté": OrderStatus.POSTPONED,
    "postponed": OrderStatus.POSTPONED,
    "différé": OrderStatus.POSTPONED,
    "plus tard": OrderStatus.POSTPONED,
    "reporté demande": OrderStatus.POSTPONED,
    "reporté client": OrderStatus.POSTPONED,
    "ajourné": OrderStatus.POSTPONED,
}

# Checked in this order; the first group with a matching keyword wins.
_KEYWORD_GROUPS: list[tuple[OrderStatus, list[str]]] = [
    (OrderStatus.PENDING, ["attente", "nouveau", "new", "traiter", "processing", "validation", "en cours"]),
    (OrderStatus.CONFIRMED, ["confirm", "valid", "accept", "approuv"]),
    (OrderStatus.SHIPPED, ["expedi", "envoy", "livraison", "route", "transit", "transport"]),
    (OrderStatus.DELIVERED, ["livr", "reçu", "remis", "termin"]),
    (OrderStatus.RETURNED, ["retour", "rembours", "échange", "refund"]),
    (OrderStatus.CANCELLED, ["annul", "abandon", "refus", "rejet", "cancel"]),
    (OrderStatus.UNREACHABLE, ["injoign", "joign", "réponse"]),
    (OrderStatus.CALLED, ["appel", "téléphon"]),
    (OrderStatus.POSTPONED, ["report", "différ", "tard", "ajourn"]),
]

# Lookups run on normalized text, so keys and keywords are normalized once.
STATUS_SYNONYMS: dict[str, OrderStatus] = {
    normalize_text(k): v for k, v in _SYNONYMS.items()
}
STATUS_KEYWORDS: list[tuple[OrderStatus, list[str]]] = [
    (status, list(dict.fromkeys(normalize_text(k) for k in keywords)))
    for status, keywords in _KEYWORD_GROUPS
]


@dataclass
class Classification:
    """Outcome of classifying one raw status."""
    status: OrderStatus
    recognized: bool


def classify(raw: Optional[str]) -> Classification:
    """
    Classify raw status text.

    Empty text is pending and counts as recognized. Text matching neither the
    dictionary nor a keyword group is pending and unrecognized.
    """
    text = normalize_text(raw)
    if not text:
        return Classification(OrderStatus.PENDING, True)

    exact = STATUS_SYNONYMS.get(text)
    if exact:
        return Classification(exact, True)

    for status, keywords in STATUS_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return Classification(status, True)

    return Classification(OrderStatus.PENDING, False)


def classify_status(raw: Optional[str]) -> OrderStatus:
    """Map raw status text to one of the nine canonical statuses."""
    return classify(raw).status


@dataclass
class StatusTally:
    """Per-run classification diagnostics."""
    counts: dict[str, int] = field(default_factory=dict)
    unrecognized_count: int = 0
    unrecognized: list[str] = field(default_factory=list)

    def classify(self, raw: Optional[str]) -> OrderStatus:
        """Classify and record the outcome."""
        result = classify(raw)
        key = result.status.value
        self.counts[key] = self.counts.get(key, 0) + 1

        if not result.recognized:
            self.unrecognized_count += 1
            value = str(raw).strip()
            if value not in self.unrecognized:
                self.unrecognized.append(value)

        return result.status

    @property
    def distinct_unrecognized(self) -> set[str]:
        return set(self.unrecognized)
