"""Exceptions du moteur de workflow RFQ -> Devis -> Commande."""

from typing import Iterable, Optional


class WorkflowDomainException(Exception):
    """Classe de base pour les exceptions du workflow."""
    kind: str = "WorkflowError"
    retryable: bool = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class NotFoundException(WorkflowDomainException):
    """Levée lorsqu'une entité référencée n'existe pas."""
    kind = "NotFound"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} avec ID {entity_id} non trouvé(e).")
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionException(WorkflowDomainException):
    """Levée lorsqu'une précondition de la machine à états n'est pas respectée."""
    kind = "InvalidTransition"

    def __init__(self, entity: str, entity_id: str, current: str, detail: str):
        super().__init__(f"Transition impossible pour {entity} {entity_id} (statut '{current}'): {detail}")
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.detail = detail


class DanglingReferenceException(WorkflowDomainException):
    """Levée lorsqu'une clé étrangère pointe vers une entité absente (données corrompues)."""
    kind = "DanglingReference"

    def __init__(self, entity: str, entity_id: str, reference: str, reference_id: str):
        super().__init__(f"{entity} {entity_id} référence {reference} {reference_id} qui n'existe pas.")
        self.entity = entity
        self.entity_id = entity_id
        self.reference = reference
        self.reference_id = reference_id


class WorkflowValidationException(WorkflowDomainException):
    """Levée lorsqu'une donnée d'entrée est invalide (prix négatif, RFQ vide...)."""
    kind = "ValidationError"

    def __init__(self, message: str, errors: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.errors = list(errors or [])


class GatewayException(WorkflowDomainException):
    """Enveloppe toute erreur de la passerelle de persistance. Toujours réessayable."""
    kind = "GatewayError"
    retryable = True

    def __init__(self, operation: str, detail: str = "Erreur de la passerelle de persistance."):
        super().__init__(f"Échec de l'opération '{operation}': {detail}")
        self.operation = operation
        self.detail = detail
