from __future__ import annotations

import re
from typing import Optional

from ledger.config import settings
from ledger.models.document import Document


def _keyword_pattern(keyword: Optional[str] = None) -> re.Pattern:
    return re.compile(re.escape(keyword or settings.deposit_keyword), re.IGNORECASE)


def is_deposit(doc: Document, keyword: Optional[str] = None) -> bool:
    """
    Facture d'acompte ?
    Le champ explicite `is_deposit` prime ; sinon recherche du mot-clé dans le
    titre ou dans une ligne à prix positif (les lignes "Déduction acompte" d'une
    facture de clôture sont négatives et ne comptent pas).
    """
    if doc.is_deposit is not None:
        return doc.is_deposit
    pattern = _keyword_pattern(keyword)
    if doc.title and pattern.search(doc.title):
        return True
    return any(it.unit_price > 0 and pattern.search(it.description or "") for it in doc.items)


def estimate_net_income(doc: Document, keyword: Optional[str] = None) -> float:
    """
    Résultat "main d'oeuvre" d'une facture payée : montant TTC moins le matériel,
    remis à l'échelle TTC et diminué des acomptes déjà déduits.
    Un acompte ne dégage aucune marge (simple flux de trésorerie / matériel).
    """
    if is_deposit(doc, keyword):
        return 0.0

    total_incl_tax = doc.totals.total_incl_tax
    items_excl_tax = doc.items_total_excl_tax()
    # ratio TTC/HT réel (gère les totaux saisis à la main)
    tax_ratio = total_incl_tax / items_excl_tax if items_excl_tax > 0.01 else 1.0

    material_excl_tax = sum(it.total_excl_tax for it in doc.items if it.line_type == "material")
    deduction_excl_tax = sum(it.quantity * abs(it.unit_price) for it in doc.items if it.unit_price < 0)
    adjusted_material = max(0.0, material_excl_tax - deduction_excl_tax)

    return round(total_incl_tax - adjusted_material * tax_ratio, 2)
