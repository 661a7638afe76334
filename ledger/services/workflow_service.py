from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, List, Optional

from ledger.config import settings
from ledger.exceptions import InvalidTransition, StaleState
from ledger.models.common import utcnow
from ledger.models.document import Document, DocumentItem
from ledger.services import lifecycle
from ledger.services.chain import ChainResolver
from ledger.services.client_service import ClientService
from ledger.services.document_service import DocumentService
from ledger.storage.cache import SnapshotCache

logger = logging.getLogger(__name__)

CLOSING_MARKER = re.compile("clôture", re.IGNORECASE)


class WorkflowService:
    """
    Actions utilisateur sur un document : transitions de statut et création des
    documents enfants (acompte, situation, clôture, avenant).
    """

    def __init__(self, documents: Optional[DocumentService] = None, clients: Optional[ClientService] = None,
                 cache: Optional[SnapshotCache] = None):
        self.documents = documents or DocumentService()
        self.clients = clients or ClientService()
        self.cache = cache

    # ----- Transitions ----- #

    def apply(self, document: Document, operation: str, **args: Any) -> Document:
        """
        Relit le document juste avant d'écrire, applique la transition et écrit
        avec contrôle optimiste. En cas d'échec d'écriture l'instantané local est
        invalidé (rechargement complet), jamais corrigé partiellement.
        """
        current = self.documents.get(document.id)
        if current.status != document.status:
            raise StaleState(document.id, document.status, current.status)

        updated = lifecycle.apply_transition(current, operation, **args)
        before = current.model_dump(mode="json")
        changes = {k: v for k, v in updated.model_dump(mode="json").items() if before.get(k) != v}
        if not changes:
            return current

        if self.cache is not None:
            self.cache.apply_local(updated)
        try:
            stored = self.documents.update(current.id, changes, expected_status=current.status)
        except Exception:
            if self.cache is not None:
                self.cache.invalidate(current.owner_id)
            raise
        logger.info("Document %s: %s (%s -> %s)", stored.id, operation, current.status, stored.status)

        if operation == "sign":
            self._mark_client_signed(stored)
        return stored

    def _mark_client_signed(self, doc: Document) -> None:
        # effet de bord CRM : un échec ne doit jamais annuler la signature
        if not doc.client_id:
            return
        try:
            self.clients.set_client_status(doc.client_id, "signed")
        except Exception as e:
            logger.warning("Statut CRM non mis à jour pour le client %s: %s", doc.client_id, e)

    def mark_sent(self, doc: Document) -> Document:
        return self.apply(doc, "mark_sent")

    def record_follow_up(self, doc: Document, now: Optional[datetime] = None) -> Document:
        return self.apply(doc, "record_follow_up", now=now or utcnow())

    def sign(self, doc: Document, signature: Optional[str], now: Optional[datetime] = None) -> Document:
        return self.apply(doc, "sign", signature=signature, now=now or utcnow())

    def convert_to_invoice(self, doc: Document, now: Optional[datetime] = None) -> Document:
        return self.apply(doc, "convert_to_invoice", now=now or utcnow())

    def mark_paid(self, doc: Document) -> Document:
        return self.apply(doc, "mark_paid")

    def refuse(self, doc: Document) -> Document:
        return self.apply(doc, "reject")

    # ----- Documents enfants ----- #

    @staticmethod
    def _require_quote(quote: Document, operation: str, allowed: tuple) -> None:
        if quote.document_type != "quote" or quote.status not in allowed:
            raise InvalidTransition(operation, f"{quote.status} {quote.document_type}", allowed)

    @staticmethod
    def _check_percentage(percentage: float) -> float:
        pct = float(percentage)
        if not 0 < pct <= 100:
            raise ValueError(f"Percentage must be in (0, 100], got {percentage}")
        return pct

    def _child(self, quote: Document, now: datetime, **fields: Any) -> Document:
        return Document(
            owner_id=quote.owner_id,
            client_id=quote.client_id,
            parent_id=quote.id,
            include_tax=quote.include_tax,
            date=now,
            created_at=now,
            updated_at=now,
            **fields,
        )

    def _share_invoice(self, quote: Document, percentage: float, now: datetime, *,
                       title: str, description: str, is_deposit: bool) -> Document:
        # le pourcentage s'applique au TTC ; la ligne porte le HT correspondant,
        # les totaux restent dérivés des lignes (au centime près)
        amount = round(quote.totals.total_incl_tax * percentage / 100, 2)
        price = amount / (1 + settings.vat_rate) if quote.include_tax else amount
        item = DocumentItem(description=description, quantity=1, unit="forfait", unit_price=round(price, 2))
        doc = self._child(quote, now, document_type="invoice", status="billed", title=title,
                          items=[item], is_deposit=is_deposit)
        return self.documents.insert(doc)

    def create_deposit_invoice(self, quote: Document, percentage: float = 30,
                               now: Optional[datetime] = None) -> Document:
        self._require_quote(quote, "create_deposit_invoice", ("accepted",))
        pct = self._check_percentage(percentage)
        return self._share_invoice(
            quote, pct, now or utcnow(),
            title=f"Facture d'Acompte - {quote.title or ''}".rstrip(" -"),
            description=f"Acompte de {pct:g}% sur devis n°{quote.id} - {quote.title or ''}".rstrip(" -"),
            is_deposit=True,
        )

    def create_situation_invoice(self, quote: Document, label: str, percentage: float,
                                 now: Optional[datetime] = None) -> Document:
        self._require_quote(quote, "create_situation_invoice", ("accepted",))
        pct = self._check_percentage(percentage)
        return self._share_invoice(
            quote, pct, now or utcnow(),
            title=f"Facture Situation - {label}",
            description=f"{label} ({pct:g}% sur devis n°{quote.id})",
            is_deposit=False,
        )

    def create_closing_invoice(self, quote: Document, now: Optional[datetime] = None) -> Document:
        """Facture de clôture : lignes du devis moins les acomptes / situations déjà facturés."""
        self._require_quote(quote, "create_closing_invoice", ("accepted",))
        now = now or utcnow()
        chain = ChainResolver(self.documents.list_documents(quote.owner_id))
        linked = [
            c for c in chain.children(quote)
            if c.document_type == "invoice" and not CLOSING_MARKER.search(c.title or "")
        ]
        items: List[DocumentItem] = [it.model_copy() for it in quote.items]
        for inv in linked:
            when = inv.date.strftime("%d/%m/%Y") if inv.date else "date inconnue"
            items.append(DocumentItem(
                description=f"Déduction {inv.title or 'Acompte'} du {when}",
                quantity=1,
                unit="forfait",
                unit_price=-abs(inv.totals.total_excl_tax),
            ))
        doc = self._child(quote, now, document_type="invoice", status="draft",
                          title=f"Facture de Clôture - {quote.title or 'Projet'}", items=items)
        return self.documents.insert(doc)

    def create_amendment(self, quote: Document, items: List[DocumentItem], title: Optional[str] = None,
                         now: Optional[datetime] = None) -> Document:
        self._require_quote(quote, "create_amendment", ("sent", "accepted"))
        doc = self._child(quote, now or utcnow(), document_type="amendment", status="draft",
                          title=title or f"Avenant - {quote.title or quote.id}", items=list(items))
        return self.documents.insert(doc)
