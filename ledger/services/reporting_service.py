"""
Tableau de bord financier : CA encaissé, résultat net, volume de devis et taux de
signature, ventilés en semaine / mois / année / année précédente autour d'une
date de référence.

Fonction pure de (documents, date de référence) : aucune mémoire entre deux appels.
"""
from __future__ import annotations

import calendar
import logging
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, Field

from ledger.exceptions import CalculationFailure, MalformedRecord
from ledger.models.common import as_naive
from ledger.models.document import Document, DocumentLike, coerce_document, document_date
from ledger.services.chain import ChainResolver
from ledger.services.net_income import estimate_net_income

logger = logging.getLogger(__name__)

WINDOWS = ("week", "month", "year", "last_year")
WEEK_LABELS = ["Lun", "Mar", "Mer", "Jeu", "Ven", "Sam", "Dim"]
MONTH_LABELS = ["Jan", "Fév", "Mar", "Avr", "Mai", "Juin", "Juil", "Août", "Sep", "Oct", "Nov", "Déc"]

# échelle des jauges : jamais une barre de largeur nulle sur un max nul
MAX_FACTOR = {"week": 1.5, "month": 1.2, "year": 1.2, "last_year": 1.2}
MAX_FLOOR = {"week": 1000.0, "month": 5000.0, "year": 10000.0, "last_year": 10000.0}

SIGNED_STATUSES = ("accepted", "paid", "billed")


# ---------- Modèles de sortie ---------- #

class ChartPoint(BaseModel):
    label: str
    value: float = 0.0


class MetricWindow(BaseModel):
    value: float = 0.0
    max: float = 0.0
    chart: List[ChartPoint] = Field(default_factory=list)
    details: List[str] = Field(default_factory=list)


class MetricReport(BaseModel):
    week: MetricWindow
    month: MetricWindow
    year: MetricWindow
    last_year: MetricWindow


class DashboardReport(BaseModel):
    reference_date: datetime
    revenue: MetricReport
    net_income: MetricReport
    quote_volume: MetricReport
    conversion_rate: MetricReport


# ---------- Helpers ---------- #

def _as_datetime(value: Union[date, datetime]) -> datetime:
    if isinstance(value, datetime):
        return as_naive(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    raise TypeError(f"reference date must be a date or datetime, got {type(value).__name__}")


def window_labels(reference: datetime) -> Dict[str, List[str]]:
    days_in_month = calendar.monthrange(reference.year, reference.month)[1]
    return {
        "week": list(WEEK_LABELS),
        "month": [str(d) for d in range(1, days_in_month + 1)],
        "year": list(MONTH_LABELS),
        "last_year": list(MONTH_LABELS),
    }


def window_slot(window: str, when: datetime, reference: datetime) -> Optional[int]:
    """Index du créneau de `when` dans la fenêtre, None s'il est hors fenêtre."""
    if window == "week":
        same_week = when.isocalendar()[:2] == reference.isocalendar()[:2]
        return when.weekday() if same_week else None
    if window == "month":
        return when.day - 1 if (when.year, when.month) == (reference.year, reference.month) else None
    if window == "year":
        return when.month - 1 if when.year == reference.year else None
    if window == "last_year":
        return when.month - 1 if when.year == reference.year - 1 else None
    raise ValueError(f"Unknown window '{window}'")


def max_hint(window: str, value: float) -> float:
    if value > 0:
        return round(value * MAX_FACTOR[window], 2)
    return MAX_FLOOR[window]


def is_signed(doc: Document) -> bool:
    return doc.is_direct_invoice or doc.status in SIGNED_STATUSES or doc.signed_at is not None


# ---------- Accumulateurs ---------- #

class _SumWindow:
    def __init__(self, labels: List[str]):
        self.labels = labels
        self.slots = [0.0] * len(labels)
        self.details: List[str] = []

    def add(self, slot: int, amount: float, doc_id: str) -> None:
        self.slots[slot] += amount
        self.details.append(doc_id)

    def build(self, window: str) -> MetricWindow:
        chart = [ChartPoint(label=lbl, value=round(v, 2)) for lbl, v in zip(self.labels, self.slots)]
        # la valeur est la somme des créneaux : Σ chart == value à l'identique
        value = sum(p.value for p in chart)
        return MetricWindow(value=value, max=max_hint(window, value), chart=chart, details=self.details)


class _RateWindow:
    def __init__(self, labels: List[str]):
        self.labels = labels
        self.totals = [0] * len(labels)
        self.signed = [0] * len(labels)
        self.details: List[str] = []

    def add(self, slot: int, signed: bool, doc_id: str) -> None:
        self.totals[slot] += 1
        self.signed[slot] += int(signed)
        self.details.append(doc_id)

    @staticmethod
    def _rate(signed: int, total: int) -> float:
        return round(signed / total * 100, 2) if total else 0.0

    def build(self, window: str) -> MetricWindow:
        chart = [
            ChartPoint(label=lbl, value=self._rate(s, t))
            for lbl, s, t in zip(self.labels, self.signed, self.totals)
        ]
        value = self._rate(sum(self.signed), sum(self.totals))
        return MetricWindow(value=value, max=100.0, chart=chart, details=self.details)


# ---------- Service ---------- #

class PeriodAggregator:
    def __init__(self, net_income: Callable[[Document], float] = estimate_net_income):
        self.net_income = net_income

    def _validated(self, raws: Iterable[DocumentLike]) -> List[Document]:
        out: List[Document] = []
        for raw in raws:
            try:
                out.append(coerce_document(raw))
            except MalformedRecord as e:
                logger.warning("Document exclu du tableau de bord: %s", e.message)
        return out

    def aggregate(self, documents: Iterable[DocumentLike], reference_date: Union[date, datetime]) -> DashboardReport:
        reference = _as_datetime(reference_date)
        labels = window_labels(reference)
        docs = self._validated(documents)
        # chaîne construite sur toute la collection, y compris les documents sans date
        chain = ChainResolver(docs)

        revenue = {w: _SumWindow(labels[w]) for w in WINDOWS}
        net = {w: _SumWindow(labels[w]) for w in WINDOWS}
        volume = {w: _SumWindow(labels[w]) for w in WINDOWS}
        conversion = {w: _RateWindow(labels[w]) for w in WINDOWS}

        used = 0
        for doc in docs:
            when = document_date(doc)
            if when is None:
                logger.warning("Document %s exclu du tableau de bord: date absente ou illisible", doc.id)
                continue
            used += 1
            slots = {w: window_slot(w, when, reference) for w in WINDOWS}
            if not any(s is not None for s in slots.values()):
                continue

            counts_as_revenue = doc.status == "paid" and not chain.is_revenue_duplicate(doc)
            amount = round(doc.totals.total_incl_tax, 2)
            net_amount = self.net_income(doc) if counts_as_revenue else 0.0
            signed = is_signed(doc)

            for w, slot in slots.items():
                if slot is None:
                    continue
                if counts_as_revenue:
                    revenue[w].add(slot, amount, doc.id)
                    net[w].add(slot, net_amount, doc.id)
                if doc.is_activity:
                    volume[w].add(slot, amount, doc.id)
                    conversion[w].add(slot, signed, doc.id)

        report = DashboardReport(
            reference_date=reference,
            revenue=MetricReport(**{w: revenue[w].build(w) for w in WINDOWS}),
            net_income=MetricReport(**{w: net[w].build(w) for w in WINDOWS}),
            quote_volume=MetricReport(**{w: volume[w].build(w) for w in WINDOWS}),
            conversion_rate=MetricReport(**{w: conversion[w].build(w) for w in WINDOWS}),
        )
        logger.debug(
            "Tableau de bord au %s: %d documents retenus, CA annuel %.2f",
            reference.date(), used, report.revenue.year.value,
        )
        return report


def empty_report(reference_date: Union[date, datetime, None] = None) -> DashboardReport:
    """Rapport tout à zéro, même forme qu'un rapport calculé."""
    try:
        reference = _as_datetime(reference_date)
    except TypeError:
        reference = datetime.now().replace(microsecond=0)
    labels = window_labels(reference)

    def metric(rate: bool) -> MetricReport:
        return MetricReport(**{
            w: (_RateWindow(labels[w]) if rate else _SumWindow(labels[w])).build(w) for w in WINDOWS
        })

    return DashboardReport(
        reference_date=reference,
        revenue=metric(False),
        net_income=metric(False),
        quote_volume=metric(False),
        conversion_rate=metric(True),
    )


def aggregate(documents: Iterable[DocumentLike], reference_date: Union[date, datetime]) -> DashboardReport:
    """Point d'entrée UI : ne lève jamais, renvoie un rapport vide en cas d'erreur."""
    try:
        return PeriodAggregator().aggregate(documents, reference_date)
    except Exception as e:
        failure = CalculationFailure(f"aggregation aborted: {e}")
        logger.exception("%s", failure.message)
        return empty_report(reference_date)
