"""
Tests de l'agenda (stockage JSON, import / export ICS).
"""
from datetime import datetime, timedelta

import pytest

from ledger.models.event import ScheduleEvent
from ledger.services.action_service import select_action_items
from ledger.services.calendar_service import CalendarService

ICS = "\n".join([
    "BEGIN:VCALENDAR",
    "VERSION:2.0",
    "PRODID:-//tests//agenda//FR",
    "BEGIN:VEVENT",
    "UID:evt-1@tests",
    "DTSTART:20261020T080000Z",
    "DTEND:20261020T100000Z",
    "SUMMARY:Chantier Dupont",
    "END:VEVENT",
    "END:VCALENDAR",
])


@pytest.fixture
def agenda(tmp_path):
    return CalendarService(data_dir=tmp_path)


def test_add_and_list_by_owner(agenda, ref):
    agenda.add_event(ScheduleEvent(id="e1", owner_id="u1", title="Métré", start=ref + timedelta(days=1)))
    agenda.add_event(ScheduleEvent(id="e2", owner_id="u2", title="Visite", start=ref + timedelta(days=1)))
    assert [e.id for e in agenda.list_events("u1")] == ["e1"]


def test_upcoming_feeds_actions(agenda, ref):
    agenda.add_event(ScheduleEvent(id="past", owner_id="u1", start=ref - timedelta(days=2)))
    agenda.add_event(ScheduleEvent(id="next", owner_id="u1", start=ref + timedelta(hours=3)))
    upcoming = agenda.upcoming("u1", ref)
    assert [e.id for e in upcoming] == ["next"]
    assert [e.id for e in select_action_items([], ref, upcoming).upcoming_events] == ["next"]


def test_import_ics(agenda):
    imported = agenda.import_ics(ICS, owner_id="u1")
    assert len(imported) == 1
    event = imported[0]
    assert event.id == "evt-1@tests"
    assert event.title == "Chantier Dupont"
    assert event.start == datetime(2026, 10, 20, 8, 0)
    assert event.end == datetime(2026, 10, 20, 10, 0)
    # deuxième import : déjà connu
    assert agenda.import_ics(ICS, owner_id="u1") == []
    assert len(agenda.list_events("u1")) == 1


def test_export_ics(agenda, ref):
    event = ScheduleEvent(id="e1", title="Livraison carrelage", start=ref, end=ref + timedelta(hours=1))
    path = agenda.export_ics([event], name="semaine 42")
    assert path.name == "semaine_42.ics"
    content = path.read_text(encoding="utf-8")
    assert "BEGIN:VCALENDAR" in content
    assert "Livraison carrelage" in content
