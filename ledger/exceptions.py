"""Exceptions du domaine devis / factures."""

from typing import Iterable, Optional


class LedgerError(Exception):
    """Classe de base pour les exceptions du domaine."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class InvalidTransition(LedgerError):
    """Levée quand une opération n'est pas permise depuis le statut courant."""
    def __init__(self, operation: str, current_status: str, allowed: Iterable[str] = ()):
        self.operation = operation
        self.current_status = current_status
        self.allowed = tuple(allowed)
        allowed_str = ", ".join(self.allowed) or "-"
        super().__init__(
            f"Cannot apply '{operation}' to a document in status '{current_status}' "
            f"(allowed from: {allowed_str})."
        )


class StaleState(LedgerError):
    """Levée quand le document a changé entre la lecture et l'écriture."""
    def __init__(self, document_id: str, expected_status: str, actual_status: Optional[str]):
        self.document_id = document_id
        self.expected_status = expected_status
        self.actual_status = actual_status
        super().__init__(
            f"Document {document_id} is now '{actual_status}', expected '{expected_status}'. "
            "Reload and retry."
        )


class MalformedRecord(LedgerError):
    """Enregistrement illisible (date, montant...). Exclu des calculs, jamais bloquant."""
    def __init__(self, document_id: Optional[str], reason: str):
        self.document_id = document_id
        self.reason = reason
        super().__init__(f"Malformed document {document_id or '?'}: {reason}")


class CalculationFailure(LedgerError):
    """Erreur inattendue pendant l'agrégation (contenue, jamais propagée à l'UI)."""
    pass


class InvalidChain(LedgerError):
    """Lien parent/enfant invalide (parent absent, autre propriétaire, cycle)."""
    def __init__(self, document_id: str, reason: str):
        self.document_id = document_id
        self.reason = reason
        super().__init__(f"Invalid chain for document {document_id}: {reason}")


class DocumentNotFound(LedgerError):
    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document {document_id} not found.")
