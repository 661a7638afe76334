from __future__ import annotations
from typing import List, Optional
import logging
from pathlib import Path

from pydantic import ValidationError

from ledger.config import settings
from ledger.models.client import Client, ClientStatus
from ledger.storage.repo import JsonRepository

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "Client inconnu"


class ClientService:
    def __init__(self, data_dir: Optional[str | Path] = None):
        base = Path(data_dir) if data_dir else settings.data_dir
        self.repo = JsonRepository(base / "clients.json", entity_name="client", key="id")

    def list_clients(self, owner_id: Optional[str] = None) -> List[Client]:
        out: List[Client] = []
        for d in self.repo.list_all():
            if owner_id is not None and d.get("owner_id") != owner_id:
                continue
            try:
                out.append(Client(**d))
            except ValidationError:
                # On ignore les entrées invalides pour ne pas casser l'UI
                logger.warning("Client %s invalide ignoré", d.get("id"))
                continue
        return out

    def add_client(self, client: Client) -> Client:
        self.repo.add(client)
        return client

    def get_by_id(self, client_id: str) -> Optional[Client]:
        d = self.repo.get_by_id(client_id)
        if d is None:
            return None
        try:
            return Client(**d)
        except ValidationError:
            return None

    def get_client_name(self, client_id: Optional[str]) -> str:
        client = self.get_by_id(client_id) if client_id else None
        return client.name if client else UNKNOWN_CLIENT

    def set_client_status(self, client_id: str, status: ClientStatus) -> Client:
        """Colonne du pipeline CRM (prospect, contacté, devis en cours, signé, perdu)."""
        try:
            d = self.repo.update(client_id, {"status": status})
        except KeyError:
            raise LookupError(f"Client {client_id} not found") from None
        return Client(**d)
