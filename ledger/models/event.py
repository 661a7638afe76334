from __future__ import annotations
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime
from .common import as_naive, gen_id

class ScheduleEvent(BaseModel):
    """Intervention / rendez-vous de l'agenda (source externe aux documents)."""
    id: str = Field(default_factory=gen_id)
    owner_id: Optional[str] = None
    title: str = ""
    start: datetime
    end: Optional[datetime] = None
    client_id: Optional[str] = None
    document_id: Optional[str] = None

    @field_validator("start", "end")
    @classmethod
    def _naive(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_naive(v)

    def is_finished(self, now: datetime) -> bool:
        return (self.end or self.start) < now
