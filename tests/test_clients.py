"""
Tests du fichier clients et du pipeline CRM.
"""
import pytest

from ledger.models.client import Client


def test_list_clients_by_owner(clients, client):
    clients.add_client(Client(id="c2", owner_id="u2", name="M. Martin"))
    assert [c.id for c in clients.list_clients("u1")] == ["c1"]
    assert len(clients.list_clients()) == 2


def test_client_name_fallback(clients, client):
    assert clients.get_client_name("c1") == "Mme Dupont"
    assert clients.get_client_name("ghost") == "Client inconnu"
    assert clients.get_client_name(None) == "Client inconnu"


def test_set_client_status(clients, client):
    assert client.status == "lead"
    assert clients.set_client_status("c1", "proposal").status == "proposal"
    assert clients.get_by_id("c1").status == "proposal"


def test_set_status_of_unknown_client(clients):
    with pytest.raises(LookupError):
        clients.set_client_status("ghost", "signed")


def test_invalid_client_is_skipped(clients, client):
    clients.repo.add({"id": "broken", "owner_id": "u1", "email": "pas-un-email"})
    assert [c.id for c in clients.list_clients("u1")] == ["c1"]
