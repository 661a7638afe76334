"""
Machine à états d'un document (devis → facture).

    draft → sent → accepted → billed → paid
    sent | accepted → rejected | postponed
    postponed → sent

Chaque opération renvoie une copie modifiée : l'appelant garde l'original pour
pouvoir annuler son état optimiste si l'écriture échoue.
Seuls les champs de la transition changent ; `updated_at` est posé par le
stockage au moment de l'écriture.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from ledger.exceptions import InvalidTransition
from ledger.models.common import as_naive
from ledger.models.document import Document

logger = logging.getLogger(__name__)

# opération -> statuts de départ autorisés
ALLOWED_FROM: Dict[str, Tuple[str, ...]] = {
    "mark_sent": ("draft",),
    "record_follow_up": ("sent",),
    "sign": ("sent", "draft"),
    "convert_to_invoice": ("accepted",),
    "mark_paid": ("billed",),
    "reject": ("sent", "accepted"),
    "postpone": ("sent", "accepted"),
    "resume": ("postponed",),
}


def _check(doc: Document, operation: str) -> None:
    allowed = ALLOWED_FROM[operation]
    if doc.status not in allowed:
        logger.info("Transition refusée: %s sur document %s (%s)", operation, doc.id, doc.status)
        raise InvalidTransition(operation, doc.status, allowed)


def _next(doc: Document, **changes: Any) -> Document:
    # model_copy ne revalide pas : dates ramenées en UTC naïf ici
    changes = {k: as_naive(v) if isinstance(v, datetime) else v for k, v in changes.items()}
    return doc.model_copy(update=changes, deep=True)


def can_apply(doc: Document, operation: str) -> bool:
    return doc.status in ALLOWED_FROM.get(operation, ())


def mark_sent(doc: Document) -> Document:
    _check(doc, "mark_sent")
    return _next(doc, status="sent")


def record_follow_up(doc: Document, now: datetime) -> Document:
    _check(doc, "record_follow_up")
    now = as_naive(now)
    if doc.last_followup_at == now:
        return doc.model_copy(deep=True)
    return _next(doc, last_followup_at=now, follow_up_count=doc.follow_up_count + 1)


def sign(doc: Document, signature: Optional[str], now: datetime) -> Document:
    _check(doc, "sign")
    return _next(doc, signature=signature, signed_at=now, status="accepted")


def convert_to_invoice(doc: Document, now: datetime) -> Document:
    _check(doc, "convert_to_invoice")
    if doc.document_type != "quote":
        # seul un devis devient facture (jamais l'inverse, jamais un avenant)
        raise InvalidTransition("convert_to_invoice", f"{doc.status} {doc.document_type}", ("accepted quote",))
    return _next(doc, document_type="invoice", status="billed", date=now)


def mark_paid(doc: Document) -> Document:
    _check(doc, "mark_paid")
    return _next(doc, status="paid")


def reject(doc: Document) -> Document:
    _check(doc, "reject")
    return _next(doc, status="rejected")


def postpone(doc: Document) -> Document:
    _check(doc, "postpone")
    return _next(doc, status="postponed")


def resume(doc: Document) -> Document:
    _check(doc, "resume")
    return _next(doc, status="sent")


OPERATIONS: Dict[str, Callable[..., Document]] = {
    "mark_sent": mark_sent,
    "record_follow_up": record_follow_up,
    "sign": sign,
    "convert_to_invoice": convert_to_invoice,
    "mark_paid": mark_paid,
    "reject": reject,
    "postpone": postpone,
    "resume": resume,
}


def apply_transition(doc: Document, operation: str, **args: Any) -> Document:
    try:
        op = OPERATIONS[operation]
    except KeyError:
        raise ValueError(f"Unknown operation '{operation}'") from None
    return op(doc, **args)
