from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from ledger.config import settings
from ledger.exceptions import DocumentNotFound, InvalidChain, InvalidTransition, MalformedRecord, StaleState
from ledger.models.common import utcnow
from ledger.models.document import Document, DocumentStatus, coerce_document
from ledger.services.chain import ChainResolver
from ledger.storage.repo import JsonRepository, Record

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[str, Dict[str, Any]], None]


class DocumentService:
    """
    Stockage des devis / factures / avenants (un seul fichier, un champ owner_id).
    Les écritures vérifient leur précondition sous le verrou du repo : une
    écriture basée sur un état périmé lève StaleState au lieu d'écraser.
    """

    def __init__(self, data_dir: Optional[str | Path] = None) -> None:
        base = Path(data_dir) if data_dir else settings.data_dir
        base.mkdir(parents=True, exist_ok=True)
        self.repo = JsonRepository(base / "documents.json", entity_name="document", key="id")

    # ----- Hydratation ----- #

    def _hydrate(self, records: List[Record]) -> List[Document]:
        out: List[Document] = []
        for d in records:
            try:
                out.append(coerce_document(d))
            except MalformedRecord as e:
                # On ignore les entrées invalides pour ne pas casser l'affichage
                logger.warning("Enregistrement ignoré: %s", e.message)
        return out

    # ----- Lecture ----- #

    def list_documents(self, owner_id: Optional[str]) -> List[Document]:
        return self._hydrate(self.repo.find(lambda d: d.get("owner_id") == owner_id))

    def list_by_status(self, owner_id: Optional[str], status: DocumentStatus) -> List[Document]:
        return [d for d in self.list_documents(owner_id) if d.status == status]

    def get(self, doc_id: str) -> Document:
        d = self.repo.get_by_id(doc_id)
        if d is None:
            raise DocumentNotFound(doc_id)
        return coerce_document(d)

    # ----- Ecriture ----- #

    def insert(self, doc: Document) -> Document:
        doc.recalc_totals(settings.vat_rate)
        if doc.parent_id is not None:
            ChainResolver(self.list_documents(doc.owner_id)).validate_parent(doc)
        record = self.repo.add(doc)
        logger.info("Document %s créé (%s, %s)", doc.id, doc.document_type, doc.status)
        return coerce_document(record)

    def update(self, doc_id: str, fields: Mapping[str, Any],
               expected_status: Optional[DocumentStatus] = None) -> Document:
        """Mise à jour partielle ; `expected_status` = contrôle de concurrence optimiste."""

        def check(current: Record) -> None:
            if "parent_id" in fields and fields["parent_id"] != current.get("parent_id"):
                raise InvalidChain(doc_id, "parent link is immutable once created")
            if expected_status is not None and current.get("status") != expected_status:
                logger.warning("Ecriture refusée sur %s: statut %s, attendu %s",
                               doc_id, current.get("status"), expected_status)
                raise StaleState(doc_id, expected_status, current.get("status"))

        patch = {**fields, "updated_at": fields.get("updated_at") or utcnow()}
        try:
            record = self.repo.update(doc_id, patch, precondition=check)
        except KeyError:
            raise DocumentNotFound(doc_id) from None
        return coerce_document(record)

    def save_draft(self, doc: Document) -> Document:
        """Edition directe des champs, permise uniquement tant que le document est brouillon."""

        def check(current: Record) -> None:
            if current.get("status") != "draft":
                raise InvalidTransition("edit", current.get("status") or "?", ("draft",))
            if doc.parent_id != current.get("parent_id"):
                raise InvalidChain(doc.id, "parent link is immutable once created")

        doc.recalc_totals(settings.vat_rate)
        doc.touch()
        fields = doc.model_dump(mode="json", exclude={"id", "status", "document_type", "created_at"})
        try:
            record = self.repo.update(doc.id, fields, precondition=check)
        except KeyError:
            raise DocumentNotFound(doc.id) from None
        return coerce_document(record)

    def delete(self, doc_id: str) -> bool:
        return self.repo.delete(doc_id)

    # ----- Notifications ----- #

    def subscribe_to_changes(self, owner_id: Optional[str], callback: ChangeCallback) -> Callable[[], None]:
        """`callback(event, record)` pour chaque insert / update / delete du propriétaire."""

        def listener(event: str, record: Record) -> None:
            if record.get("owner_id") == owner_id:
                callback(event, record)

        return self.repo.subscribe(listener)
