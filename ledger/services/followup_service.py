"""Plan de relances des devis envoyés (J+3, J+7, J+14 par défaut)."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel

from ledger.config import FollowUpStep, settings
from ledger.exceptions import MalformedRecord
from ledger.models.document import Document, DocumentLike, coerce_document

logger = logging.getLogger(__name__)


class DueFollowUp(BaseModel):
    document: Document
    step_index: int
    step: FollowUpStep
    due_date: datetime


class FollowUpService:
    def __init__(self, steps: Optional[List[FollowUpStep]] = None):
        self.steps = list(steps) if steps is not None else list(settings.follow_up_steps)

    def next_step(self, doc: Document) -> Optional[Tuple[int, FollowUpStep]]:
        idx = doc.follow_up_count
        if idx >= len(self.steps):
            return None
        return idx, self.steps[idx]

    def due_date(self, doc: Document) -> Optional[datetime]:
        nxt = self.next_step(doc)
        if nxt is None:
            return None
        idx, step = nxt
        # 1re relance depuis la date du devis, les suivantes depuis la dernière relance
        reference = doc.last_followup_at if idx > 0 and doc.last_followup_at else doc.date
        if reference is None:
            return None
        return reference + timedelta(days=step.delay_days)

    def due_follow_ups(self, documents: Iterable[DocumentLike], now: datetime) -> List[DueFollowUp]:
        out: List[DueFollowUp] = []
        for raw in documents:
            try:
                doc = coerce_document(raw)
            except MalformedRecord as e:
                logger.warning("Relance ignorée: %s", e.message)
                continue
            if doc.status != "sent":
                continue
            due = self.due_date(doc)
            if due is None or due > now:
                continue
            idx, step = self.next_step(doc)
            out.append(DueFollowUp(document=doc, step_index=idx, step=step, due_date=due))
        out.sort(key=lambda f: f.due_date)
        return out
