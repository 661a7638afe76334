from __future__ import annotations
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from ledger.exceptions import InvalidChain
from ledger.models.document import Document, document_date


class ChainResolver:
    """
    Liens parent → enfants (acompte → facture finale, devis → situations, devis → avenant)
    sur l'ensemble des documents d'un même propriétaire.

    Les décisions (soldé par les enfants, doublon de CA) dépendent de toute la
    collection : reconstruire le resolver à chaque nouvel instantané.
    """

    def __init__(self, documents: Iterable[Document]):
        self._by_id: Dict[str, Document] = {}
        self._children: Dict[str, List[Document]] = defaultdict(list)
        for doc in documents:
            self._by_id[doc.id] = doc
            if doc.parent_id is not None:
                self._children[doc.parent_id].append(doc)

    def get(self, doc_id: Optional[str]) -> Optional[Document]:
        return self._by_id.get(doc_id) if doc_id is not None else None

    def children(self, doc: Document) -> List[Document]:
        return [c for c in self._children.get(doc.id, []) if c.owner_id == doc.owner_id]

    def is_settled_by_children(self, doc: Document) -> bool:
        """Facture émise dont le suivi des paiements est passé aux enfants."""
        return doc.document_type == "invoice" and doc.status == "billed" and bool(self.children(doc))

    def has_invoice_descendant(self, doc: Document) -> bool:
        """Devis signé déjà transformé : ne doit plus apparaître dans "à facturer"."""
        return doc.status == "accepted" and bool(self.children(doc))

    def is_revenue_duplicate(self, doc: Document) -> bool:
        # parent payé + facture enfant payée = même encaissement, on ne compte que l'enfant ;
        # un enfant sans date est exclu des calculs, le parent reste alors compté
        if doc.status != "paid":
            return False
        return any(
            c.status == "paid" and c.document_type == "invoice" and document_date(c) is not None
            for c in self.children(doc)
        )

    def ancestors(self, doc: Document) -> List[Document]:
        out: List[Document] = []
        seen = {doc.id}
        current = self.get(doc.parent_id)
        while current is not None and current.id not in seen:
            out.append(current)
            seen.add(current.id)
            current = self.get(current.parent_id)
        return out

    def validate_parent(self, doc: Document) -> None:
        """Refuse un lien qui casserait le graphe (parent absent, autre propriétaire, cycle)."""
        if doc.parent_id is None:
            return
        if doc.parent_id == doc.id:
            raise InvalidChain(doc.id, "a document cannot be its own parent")
        parent = self.get(doc.parent_id)
        if parent is None:
            raise InvalidChain(doc.id, f"parent {doc.parent_id} does not exist")
        if parent.owner_id != doc.owner_id:
            raise InvalidChain(doc.id, f"parent {doc.parent_id} belongs to another owner")
        seen = {doc.id}
        current: Optional[Document] = parent
        while current is not None:
            if current.id in seen:
                raise InvalidChain(doc.id, "parent link would create a cycle")
            seen.add(current.id)
            current = self.get(current.parent_id)
