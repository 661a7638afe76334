from __future__ import annotations
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ics import Calendar, Event
from pydantic import ValidationError

from ledger.config import settings
from ledger.models.event import ScheduleEvent
from ledger.storage.repo import JsonRepository

logger = logging.getLogger(__name__)


class CalendarService:
    """Agenda des interventions : source externe des "prochains rendez-vous"."""

    def __init__(self, data_dir: Optional[str | Path] = None):
        base = Path(data_dir) if data_dir else settings.data_dir
        self.repo = JsonRepository(base / "events.json", entity_name="event", key="id")
        self.exports_dir = base / "exports" / "agenda"

    def list_events(self, owner_id: Optional[str] = None) -> List[ScheduleEvent]:
        out: List[ScheduleEvent] = []
        for d in self.repo.list_all():
            if owner_id is not None and d.get("owner_id") != owner_id:
                continue
            try:
                out.append(ScheduleEvent(**d))
            except ValidationError:
                logger.warning("Evènement %s invalide ignoré", d.get("id"))
        return out

    def add_event(self, event: ScheduleEvent) -> ScheduleEvent:
        self.repo.add(event)
        return event

    def import_ics(self, text: str, owner_id: Optional[str] = None) -> List[ScheduleEvent]:
        """Importe un export .ics (Google Agenda, Outlook...)."""
        known = {e.id for e in self.list_events()}
        imported: List[ScheduleEvent] = []
        for e in Calendar(text).events:
            if e.begin is None:
                logger.warning("Evènement ICS sans date ignoré: %s", e.name)
                continue
            fields = dict(
                owner_id=owner_id,
                title=e.name or "",
                start=e.begin.datetime,
                end=e.end.datetime if e.end is not None else None,
            )
            if e.uid:
                fields["id"] = e.uid
            event = ScheduleEvent(**fields)
            if event.id in known:
                continue
            imported.append(self.add_event(event))
        logger.info("%d évènement(s) importé(s) depuis ICS", len(imported))
        return imported

    def export_ics(self, events: List[ScheduleEvent], name: str = "agenda") -> Path:
        c = Calendar()
        for ev in events:
            e = Event()
            e.uid = ev.id
            e.name = ev.title
            e.begin = ev.start
            if ev.end is not None:
                e.end = ev.end
            c.events.add(e)
        self.exports_dir.mkdir(parents=True, exist_ok=True)
        path = self.exports_dir / f"{name.replace(' ', '_')}.ics"
        with open(path, "w", encoding="utf-8") as f:
            f.writelines(c)
        return path

    def upcoming(self, owner_id: Optional[str], now: datetime) -> List[ScheduleEvent]:
        return [e for e in self.list_events(owner_id) if not e.is_finished(now)]
