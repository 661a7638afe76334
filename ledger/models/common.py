from pydantic import BaseModel, Field
from datetime import datetime, timezone
from typing import Optional
import uuid

def gen_id() -> str:
    return str(uuid.uuid4())

def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)

def as_naive(dt: Optional[datetime]) -> Optional[datetime]:
    """Ramène une date "aware" (ex: ISO avec Z venant de la base) en UTC naïf."""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)

class TimeStamped(BaseModel):
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def touch(self, now: Optional[datetime] = None):
        object.__setattr__(self, "updated_at", now or utcnow())
