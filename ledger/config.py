from __future__ import annotations
import json
import logging
import os
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).resolve().parents[1]
DATA_DIR = Path(os.environ.get("LEDGER_DATA_DIR") or ROOT_DIR / "data")
SETTINGS_JSON = DATA_DIR / "settings.json"


class FollowUpStep(BaseModel):
    delay_days: int = Field(..., ge=0)
    label: str
    context: str = ""


def _default_steps() -> List[FollowUpStep]:
    return [
        FollowUpStep(delay_days=3, label="Relance douce", context="Rappel amical, demander s'ils ont des questions."),
        FollowUpStep(delay_days=7, label="Relance standard", context="Souligner la disponibilité et la validité du devis."),
        FollowUpStep(delay_days=14, label="Dernière relance", context="Demander courtoisement une décision finale."),
    ]


class Settings(BaseModel):
    data_dir: Path = DATA_DIR
    vat_rate: float = 0.20

    # Tableau de bord "actions prioritaires"
    follow_up_delay_days: int = 7
    overdue_page_size: int = 3
    drafts_page_size: int = 3
    upcoming_events_limit: int = 3

    # Détection des factures d'acompte quand is_deposit n'est pas renseigné
    deposit_keyword: str = "acompte"

    follow_up_steps: List[FollowUpStep] = Field(default_factory=_default_steps)

    class Config:
        extra = "ignore"


def _load_json(path: os.PathLike | str):
    p = Path(path)
    if not p.exists():
        return None
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Lecture impossible de %s (%s), valeurs par défaut utilisées", p, e)
        return None


def load_settings(path: Optional[os.PathLike | str] = None) -> Settings:
    """Charge data/settings.json (section "ledger") ; défauts si absent ou invalide."""
    raw = _load_json(path or SETTINGS_JSON) or {}
    section = raw.get("ledger", raw) if isinstance(raw, dict) else {}
    try:
        return Settings(**section)
    except ValidationError as e:
        logger.warning("settings.json invalide, valeurs par défaut utilisées: %s", e)
        return Settings()


settings = load_settings()
