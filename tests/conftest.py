from datetime import datetime, timedelta
from typing import Callable, Optional

import pytest

from ledger.models.client import Client
from ledger.models.document import Document, DocumentItem, Totals
from ledger.services.client_service import ClientService
from ledger.services.document_service import DocumentService
from ledger.services.workflow_service import WorkflowService
from ledger.storage.cache import SnapshotCache

# Mercredi, semaine ISO 42 (lundi 12 octobre 2026)
REF = datetime(2026, 10, 14, 10, 0)


@pytest.fixture
def ref() -> datetime:
    return REF


@pytest.fixture
def make_doc() -> Callable[..., Document]:
    """Fabrique de documents ; `total=` fixe un TTC sans TVA pour les tests de montants."""

    def _make(total: Optional[float] = None, days_ago: Optional[float] = None, **fields) -> Document:
        if days_ago is not None:
            fields.setdefault("date", REF - timedelta(days=days_ago))
        doc = Document(**fields)
        if total is not None:
            doc.totals = Totals(total_excl_tax=total, total_tax=0.0, total_incl_tax=total)
        return doc

    return _make


@pytest.fixture
def material_item() -> DocumentItem:
    return DocumentItem(description="Carrelage", quantity=1, unit_price=100, line_type="material")


@pytest.fixture
def store(tmp_path) -> DocumentService:
    return DocumentService(data_dir=tmp_path)


@pytest.fixture
def clients(tmp_path) -> ClientService:
    return ClientService(data_dir=tmp_path)


@pytest.fixture
def client(clients) -> Client:
    return clients.add_client(Client(id="c1", owner_id="u1", name="Mme Dupont"))


@pytest.fixture
def cache(store) -> SnapshotCache:
    c = SnapshotCache(store)
    yield c
    c.close()


@pytest.fixture
def workflow(store, clients, cache) -> WorkflowService:
    return WorkflowService(documents=store, clients=clients, cache=cache)


@pytest.fixture
def accepted_quote(store, client) -> Document:
    """Devis signé de 1000 € HT (1200 € TTC)."""
    quote = Document(
        id="q1", owner_id="u1", client_id=client.id, title="Salle de bain",
        status="accepted", signed_at=REF - timedelta(days=2), date=REF - timedelta(days=10),
        items=[DocumentItem(description="Pose", quantity=1, unit_price=1000)],
    )
    return store.insert(quote)
