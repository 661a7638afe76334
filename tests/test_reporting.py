"""
Tests du tableau de bord financier (fenêtres semaine / mois / année / année précédente).
"""
import logging
from datetime import date, datetime

import pytest

from ledger.services.reporting_service import (
    PeriodAggregator,
    WINDOWS,
    aggregate,
    empty_report,
    max_hint,
    window_slot,
)

METRICS = ("revenue", "net_income", "quote_volume", "conversion_rate")


@pytest.fixture
def docs(make_doc):
    return [
        make_doc(id="a", owner_id="u1", document_type="invoice", status="paid", total=1200, days_ago=0),
        make_doc(id="b", owner_id="u1", document_type="invoice", status="paid", total=450.55, days_ago=2),
        make_doc(id="c", owner_id="u1", status="sent", total=800, days_ago=20),
        make_doc(id="d", owner_id="u1", status="accepted", total=300, days_ago=100),
        make_doc(id="e", owner_id="u1", document_type="invoice", status="paid", total=999.99,
                 date=datetime(2025, 3, 5)),
    ]


def test_aggregate_is_idempotent(docs, ref):
    first = aggregate(docs, ref)
    second = aggregate(docs, ref)
    assert first == second
    assert first.model_dump() == second.model_dump()


def test_value_is_sum_of_chart(docs, ref):
    report = aggregate(docs, ref)
    for metric in ("revenue", "net_income", "quote_volume"):
        for window in WINDOWS:
            w = getattr(getattr(report, metric), window)
            assert sum(p.value for p in w.chart) == w.value


def test_revenue_windows(docs, ref):
    report = aggregate(docs, ref)
    # a : mercredi 14 ; b : lundi 12 (même semaine ISO)
    assert report.revenue.week.value == pytest.approx(1650.55)
    assert report.revenue.week.chart[2].value == 1200
    assert report.revenue.week.chart[0].value == 450.55
    assert report.revenue.month.chart[13].value == 1200
    assert report.revenue.year.chart[9].value == pytest.approx(1650.55)
    assert report.revenue.last_year.chart[2].value == 999.99
    assert report.revenue.last_year.details == ["e"]


def test_chart_labels(ref):
    report = empty_report(ref)
    assert [p.label for p in report.revenue.week.chart] == ["Lun", "Mar", "Mer", "Jeu", "Ven", "Sam", "Dim"]
    assert len(report.revenue.month.chart) == 31
    assert report.revenue.year.chart[1].label == "Fév"
    assert len(empty_report(date(2026, 2, 10)).revenue.month.chart) == 28


def test_previous_iso_week_is_outside_week(make_doc, ref):
    sunday = make_doc(id="s", document_type="invoice", status="paid", total=100, date=datetime(2026, 10, 11, 18))
    report = aggregate([sunday], ref)
    assert report.revenue.week.value == 0
    assert report.revenue.month.value == 100


def test_week_slot_across_year_boundary():
    # le 1er janvier 2027 (vendredi) appartient à la semaine ISO 53 de 2026
    assert window_slot("week", datetime(2027, 1, 1), datetime(2026, 12, 30)) == 4


def test_paid_parent_and_child_counted_once(make_doc, ref):
    parent = make_doc(id="P", owner_id="u1", status="paid", total=1000, days_ago=1)
    child = make_doc(id="C", owner_id="u1", document_type="invoice", status="paid",
                     parent_id="P", total=1000, days_ago=1)
    report = aggregate([parent, child], ref)
    assert report.revenue.year.value == 1000
    assert report.revenue.year.details == ["C"]


def test_undated_child_leaves_parent_counted(make_doc, ref):
    parent = make_doc(id="P", owner_id="u1", status="paid", total=1000, days_ago=1)
    child = make_doc(id="C", owner_id="u1", document_type="invoice", status="paid", parent_id="P", total=1000)
    report = aggregate([parent, child], ref)
    assert report.revenue.year.value == 1000
    assert report.revenue.year.details == ["P"]


def test_quote_volume_excludes_child_invoices(make_doc, ref):
    quote = make_doc(id="Q", owner_id="u1", status="accepted", total=1000, days_ago=1)
    deposit = make_doc(id="D", owner_id="u1", document_type="invoice", status="billed",
                       parent_id="Q", total=300, days_ago=1)
    direct = make_doc(id="I", owner_id="u1", document_type="invoice", status="billed", total=50, days_ago=1)
    report = aggregate([quote, deposit, direct], ref)
    assert report.quote_volume.month.value == 1050
    assert sorted(report.quote_volume.month.details) == ["I", "Q"]


def test_conversion_rate(make_doc, ref):
    docs = [
        make_doc(id="1", status="sent", days_ago=1),
        make_doc(id="2", status="accepted", days_ago=1),
        make_doc(id="3", status="draft", signed_at=ref, days_ago=1),
        make_doc(id="4", document_type="invoice", status="billed", days_ago=1),
    ]
    report = aggregate(docs, ref)
    assert report.conversion_rate.month.value == 75.0
    assert report.conversion_rate.month.max == 100
    assert report.conversion_rate.last_year.value == 0
    for window in WINDOWS:
        w = getattr(report.conversion_rate, window)
        assert 0 <= w.value <= 100
        assert all(0 <= p.value <= 100 for p in w.chart)


def test_net_income_follows_revenue(make_doc, material_item, ref):
    doc = make_doc(id="m", document_type="invoice", status="paid", items=[material_item], days_ago=0)
    doc.recalc_totals()
    report = aggregate([doc], ref)
    assert report.revenue.week.value == 120
    assert report.net_income.week.value == 0


def test_max_hint():
    assert max_hint("week", 0) == 1000
    assert max_hint("month", 0) == 5000
    assert max_hint("year", -10) == 10000
    assert max_hint("last_year", 0) == 10000
    assert max_hint("week", 1000) == 1500
    assert max_hint("month", 1000) == 1200


def test_malformed_record_is_skipped(make_doc, ref, caplog):
    good = make_doc(id="ok", document_type="invoice", status="paid", total=100, days_ago=0)
    bad = {"id": "bad", "status": "paid", "date": "pas une date", "totals": {"total_incl_tax": 5}}
    with caplog.at_level(logging.WARNING):
        report = aggregate([good, bad], ref)
    assert report.revenue.week.value == 100
    assert "bad" in caplog.text


def test_non_finite_total_is_skipped(make_doc, ref):
    good = make_doc(id="ok", document_type="invoice", status="paid", total=100, days_ago=0)
    nan = make_doc(id="nan", document_type="invoice", status="paid", total=float("nan"), days_ago=0)
    assert aggregate([good, nan], ref).revenue.week.value == 100


def test_undated_document_is_skipped(make_doc, ref):
    undated = make_doc(id="x", document_type="invoice", status="paid", total=100)
    assert aggregate([undated], ref).revenue.year.value == 0


def test_created_at_from_store_is_used_as_fallback(ref):
    raw = {"id": "r", "document_type": "invoice", "status": "paid",
           "created_at": "2026-10-13T09:00:00Z", "totals": {"total_incl_tax": 80}}
    report = aggregate([raw], ref)
    assert report.revenue.week.chart[1].value == 80


def test_accepts_plain_date_reference(docs):
    report = aggregate(docs, date(2026, 10, 14))
    assert report.reference_date == datetime(2026, 10, 14)


def test_failure_returns_empty_report(docs, caplog):
    with caplog.at_level(logging.ERROR):
        report = aggregate(docs, "pas une date")
    for metric in METRICS:
        for window in WINDOWS:
            assert getattr(getattr(report, metric), window).value == 0
    assert len(report.revenue.year.chart) == 12
    assert "aggregation aborted" in caplog.text


def test_custom_net_income_estimator(make_doc, ref):
    doc = make_doc(id="a", document_type="invoice", status="paid", total=1000, days_ago=0)
    report = PeriodAggregator(net_income=lambda d: 42.0).aggregate([doc], ref)
    assert report.net_income.week.value == 42
