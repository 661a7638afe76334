"""Actions prioritaires : ce que l'artisan doit traiter maintenant."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from pydantic import BaseModel, Field

from ledger.config import Settings, settings as default_settings
from ledger.exceptions import MalformedRecord
from ledger.models.common import as_naive
from ledger.models.document import Document, DocumentLike, coerce_document
from ledger.models.event import ScheduleEvent
from ledger.services.chain import ChainResolver

logger = logging.getLogger(__name__)


class ActionItems(BaseModel):
    signed_not_invoiced: List[Document] = Field(default_factory=list)
    overdue_follow_up: List[Document] = Field(default_factory=list)
    pending_invoices: List[Document] = Field(default_factory=list)
    drafts: List[Document] = Field(default_factory=list)
    upcoming_events: List[ScheduleEvent] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not any((self.signed_not_invoiced, self.overdue_follow_up, self.pending_invoices,
                        self.drafts, self.upcoming_events))


def _recent_first(doc: Document) -> datetime:
    return doc.updated_at or datetime.min


class ActionSelector:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

    def _documents(self, raws: Iterable[DocumentLike]) -> List[Document]:
        out: List[Document] = []
        for raw in raws:
            try:
                out.append(coerce_document(raw))
            except MalformedRecord as e:
                logger.warning("Document ignoré dans les actions: %s", e.message)
        return out

    def is_follow_up_overdue(self, doc: Document, now: datetime) -> bool:
        if doc.status != "sent" or doc.date is None:
            return False
        threshold = now - timedelta(days=self.settings.follow_up_delay_days)
        if doc.date >= threshold:
            return False
        return doc.last_followup_at is None or doc.last_followup_at < threshold

    def upcoming(self, events: Iterable[ScheduleEvent], now: datetime) -> List[ScheduleEvent]:
        pending = [e for e in events if not e.is_finished(now)]
        pending.sort(key=lambda e: e.start)
        return pending[: self.settings.upcoming_events_limit]

    def select(self, documents: Iterable[DocumentLike], now: datetime,
               events: Iterable[ScheduleEvent] = ()) -> ActionItems:
        now = as_naive(now)
        docs = self._documents(documents)
        chain = ChainResolver(docs)

        signed = [d for d in docs if d.status == "accepted" and not chain.has_invoice_descendant(d)]
        signed.sort(key=_recent_first, reverse=True)

        overdue = [d for d in docs if self.is_follow_up_overdue(d, now)]
        overdue.sort(key=lambda d: d.date)

        pending = [d for d in docs if d.status == "billed" and not chain.is_settled_by_children(d)]
        pending.sort(key=lambda d: d.date or datetime.max)

        drafts = [d for d in docs if d.status == "draft"]
        drafts.sort(key=_recent_first, reverse=True)

        return ActionItems(
            signed_not_invoiced=signed,
            overdue_follow_up=overdue[: self.settings.overdue_page_size],
            pending_invoices=pending,
            drafts=drafts[: self.settings.drafts_page_size],
            upcoming_events=self.upcoming(events, now),
        )


def select_action_items(documents: Iterable[DocumentLike], now: datetime,
                        events: Iterable[ScheduleEvent] = ()) -> ActionItems:
    return ActionSelector().select(documents, now, events)
