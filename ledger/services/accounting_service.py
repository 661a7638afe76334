from __future__ import annotations
import logging
from typing import Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, Field

from ledger.exceptions import MalformedRecord
from ledger.models.document import Document, DocumentLike, coerce_document, document_date
from ledger.services.chain import ChainResolver

logger = logging.getLogger(__name__)

ActivityType = Literal["services", "vente", "liberal", "mixte"]

# Taux URSSAF micro-entrepreneur (normal, ACRE)
URSSAF_RATES: Dict[str, tuple] = {
    "services": (0.212, 0.106),  # prestations de services artisanales (BIC)
    "vente": (0.123, 0.062),     # achat / revente de marchandises (BIC)
    "liberal": (0.256, 0.128),   # profession libérale (BNC)
}

# Plafonds de CA annuel micro-entreprise
CA_LIMITS: Dict[str, float] = {"services": 77700.0, "vente": 188700.0, "liberal": 77700.0}


class RevenueBreakdown(BaseModel):
    services: float = 0.0
    goods: float = 0.0
    documents: List[str] = Field(default_factory=list)

    @property
    def total(self) -> float:
        return round(self.services + self.goods, 2)


class ContributionProfile(BaseModel):
    artisan_status: str = "micro_entreprise"
    activity_type: ActivityType = "services"
    has_acre: bool = False


class ContributionLine(BaseModel):
    revenue: float
    rate: float
    charges: float


class ContributionEstimate(BaseModel):
    total: float
    lines: Dict[str, ContributionLine]


class CeilingStatus(BaseModel):
    label: str
    limit: float
    percentage: float

    @property
    def is_near_limit(self) -> bool:
        return self.percentage >= 80

    @property
    def is_over_limit(self) -> bool:
        return self.percentage >= 100


class AccountingService:
    """CA encaissé par période (services / marchandises) et charges sociales estimées."""

    @staticmethod
    def _in_period(doc: Document, year: int, month: Optional[int], quarter: Optional[int]) -> bool:
        when = document_date(doc)
        if when is None or when.year != year:
            return False
        if month is not None:
            return when.month == month
        if quarter is not None:
            return (when.month - 1) // 3 + 1 == quarter
        return True

    def period_revenue(self, documents: Iterable[DocumentLike], year: int,
                       month: Optional[int] = None, quarter: Optional[int] = None) -> RevenueBreakdown:
        docs: List[Document] = []
        for raw in documents:
            try:
                docs.append(coerce_document(raw))
            except MalformedRecord as e:
                logger.warning("Document exclu de la comptabilité: %s", e.message)
        chain = ChainResolver(docs)

        out = RevenueBreakdown()
        for doc in docs:
            if doc.status != "paid" or chain.is_revenue_duplicate(doc):
                continue
            if not self._in_period(doc, year, month, quarter):
                continue
            if doc.items:
                for it in doc.items:
                    if it.line_type == "material":
                        out.goods += it.total_excl_tax
                    else:
                        out.services += it.total_excl_tax
            else:
                # pas de lignes : tout en prestation, sur le HT
                out.services += doc.totals.total_excl_tax
            out.documents.append(doc.id)
        out.services = round(out.services, 2)
        out.goods = round(out.goods, 2)
        return out

    @staticmethod
    def _rate(kind: str, has_acre: bool) -> float:
        normal, acre = URSSAF_RATES[kind]
        return acre if has_acre else normal

    def estimate_contributions(self, revenue: RevenueBreakdown,
                               profile: ContributionProfile) -> Optional[ContributionEstimate]:
        """Hors micro-entreprise, pas d'estimation simple possible : None."""
        if profile.artisan_status != "micro_entreprise":
            return None

        activity = profile.activity_type
        mixed = (
            activity == "mixte"
            or (activity == "services" and revenue.goods > 0)
            or (activity == "vente" and revenue.services > 0)
        )
        lines: Dict[str, ContributionLine] = {}
        if mixed:
            for kind, amount in (("services", revenue.services), ("vente", revenue.goods)):
                rate = self._rate(kind, profile.has_acre)
                lines[kind] = ContributionLine(revenue=amount, rate=rate, charges=round(amount * rate, 2))
        else:
            rate = self._rate(activity, profile.has_acre)
            lines[activity] = ContributionLine(revenue=revenue.total, rate=rate,
                                               charges=round(revenue.total * rate, 2))
        return ContributionEstimate(total=round(sum(l.charges for l in lines.values()), 2), lines=lines)

    def ceiling_status(self, yearly: RevenueBreakdown, profile: ContributionProfile) -> CeilingStatus:
        if profile.activity_type == "mixte":
            # global <= plafond vente, et part services <= plafond services
            global_pct = yearly.total / CA_LIMITS["vente"] * 100
            service_pct = yearly.services / CA_LIMITS["services"] * 100
            if service_pct > global_pct:
                return CeilingStatus(label="Plafond Services (Mixte)", limit=CA_LIMITS["services"],
                                     percentage=round(service_pct, 2))
            return CeilingStatus(label="Plafond Global (Mixte)", limit=CA_LIMITS["vente"],
                                 percentage=round(global_pct, 2))
        limit = CA_LIMITS.get(profile.activity_type, CA_LIMITS["services"])
        return CeilingStatus(label=f"Plafond {profile.activity_type}", limit=limit,
                             percentage=round(yearly.total / limit * 100, 2))
