from __future__ import annotations
import math
from pydantic import BaseModel, Field, ValidationError, field_validator
from typing import Any, List, Literal, Mapping, Optional, Union
from datetime import datetime
from ledger.exceptions import MalformedRecord
from .common import TimeStamped, as_naive, gen_id

DocumentType = Literal["quote", "invoice", "amendment"]
DocumentStatus = Literal["draft", "sent", "accepted", "rejected", "billed", "paid", "postponed"]
LineType = Literal["service", "material"]
WorkStage = Literal["planned", "in_progress", "completed"]

VAT_RATE = 0.20

class DocumentItem(BaseModel):
    description: str = ""
    quantity: float = 1.0
    unit_price: float = 0.0
    buying_price: float = 0.0
    line_type: LineType = "service"
    unit: Optional[str] = None

    @property
    def total_excl_tax(self) -> float:
        return self.quantity * self.unit_price

class Totals(BaseModel):
    total_excl_tax: float = 0.0
    total_tax: float = 0.0
    total_incl_tax: float = 0.0

class Document(TimeStamped):
    id: str = Field(default_factory=gen_id)
    owner_id: Optional[str] = None
    client_id: Optional[str] = None
    parent_id: Optional[str] = None

    document_type: DocumentType = "quote"
    status: DocumentStatus = "draft"
    title: Optional[str] = None
    notes: Optional[str] = None

    items: List[DocumentItem] = Field(default_factory=list)
    include_tax: bool = True
    totals: Totals = Field(default_factory=Totals)

    date: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    signed_at: Optional[datetime] = None
    last_followup_at: Optional[datetime] = None
    follow_up_count: int = 0

    signature: Optional[str] = None
    work_stage: Optional[WorkStage] = None
    # None => détection par mot-clé (voir net_income)
    is_deposit: Optional[bool] = None

    class Config:
        extra = "ignore"  # tolère les colonnes inconnues de la base

    @field_validator("date", "valid_until", "signed_at", "last_followup_at", "created_at", "updated_at")
    @classmethod
    def _naive(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_naive(v)

    # helpers
    @property
    def is_direct_invoice(self) -> bool:
        return self.document_type == "invoice" and self.parent_id is None

    @property
    def is_activity(self) -> bool:
        return self.document_type == "quote" or self.is_direct_invoice

    def items_total_excl_tax(self) -> float:
        return sum(it.total_excl_tax for it in self.items)

    def recalc_totals(self, vat_rate: float = VAT_RATE) -> Document:
        excl = round(self.items_total_excl_tax(), 2)
        tax = round(excl * vat_rate, 2) if self.include_tax else 0.0
        self.totals = Totals(total_excl_tax=excl, total_tax=tax, total_incl_tax=round(excl + tax, 2))
        return self


DocumentLike = Union[Document, Mapping[str, Any]]


def document_date(doc: Document) -> Optional[datetime]:
    """Date comptable : `date`, sinon `created_at` s'il vient vraiment de la base."""
    if doc.date is not None:
        return doc.date
    if "created_at" in doc.model_fields_set:
        return doc.created_at
    return None


def coerce_document(raw: DocumentLike) -> Document:
    """Document validé, ou MalformedRecord si l'enregistrement brut est illisible."""
    if isinstance(raw, Document):
        doc = raw
    else:
        try:
            doc = Document.model_validate(raw)
        except ValidationError as e:
            doc_id = raw.get("id") if isinstance(raw, Mapping) else None
            raise MalformedRecord(doc_id, f"{e.error_count()} invalid field(s)") from e
    if not math.isfinite(doc.totals.total_incl_tax):
        raise MalformedRecord(doc.id, "total_incl_tax is not a finite number")
    return doc
