from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Callable, Dict, List, Optional

from ledger.models.document import Document
from ledger.services.document_service import DocumentService

logger = logging.getLogger(__name__)


class SnapshotCache:
    """
    Cache lecture de la collection complète d'un propriétaire.

    - invalidé entièrement sur écriture locale ou notification distante
      (pas de fusion ligne par ligne : chaînes et dédoublonnage dépendent de tout le lot)
    - une lecture dépassée par une lecture plus récente ou par une invalidation
      n'est jamais installée (dernier instantané gagnant)
    """

    def __init__(self, store: DocumentService) -> None:
        self.store = store
        self._lock = threading.Lock()
        self._snapshots: Dict[Optional[str], List[Document]] = {}
        self._generation: Dict[Optional[str], int] = defaultdict(int)
        self._fetch_seq: Dict[Optional[str], int] = defaultdict(int)
        self._unsubscribe: Dict[Optional[str], Callable[[], None]] = {}

    def _ensure_subscribed(self, owner_id: Optional[str]) -> None:
        with self._lock:
            if owner_id in self._unsubscribe:
                return
            self._unsubscribe[owner_id] = self.store.subscribe_to_changes(
                owner_id, lambda event, record: self.invalidate(owner_id)
            )

    def get(self, owner_id: Optional[str]) -> List[Document]:
        self._ensure_subscribed(owner_id)
        with self._lock:
            cached = self._snapshots.get(owner_id)
            if cached is not None:
                return list(cached)
            self._fetch_seq[owner_id] += 1
            seq = self._fetch_seq[owner_id]
            generation = self._generation[owner_id]

        docs = self.store.list_documents(owner_id)

        with self._lock:
            if seq == self._fetch_seq[owner_id] and generation == self._generation[owner_id]:
                self._snapshots[owner_id] = docs
            else:
                logger.debug("Lecture obsolète ignorée pour %s (seq %d)", owner_id, seq)
        return list(docs)

    def refresh(self, owner_id: Optional[str]) -> List[Document]:
        self.invalidate(owner_id)
        return self.get(owner_id)

    def invalidate(self, owner_id: Optional[str]) -> None:
        with self._lock:
            self._generation[owner_id] += 1
            self._snapshots.pop(owner_id, None)

    def apply_local(self, doc: Document) -> None:
        """Etat optimiste : remplace le document dans l'instantané en attendant l'écriture."""
        with self._lock:
            snapshot = self._snapshots.get(doc.owner_id)
            if snapshot is None:
                return
            self._snapshots[doc.owner_id] = [doc if d.id == doc.id else d for d in snapshot]

    def close(self) -> None:
        with self._lock:
            unsubscribes = list(self._unsubscribe.values())
            self._unsubscribe.clear()
        for unsubscribe in unsubscribes:
            unsubscribe()
