"""
Gestion du cycle de vie des RFQ.

Le statut d'une RFQ est stocké de façon autoritaire:
OPEN -> QUOTED lorsqu'un devis est envoyé au client, OPEN|QUOTED -> CLOSED
uniquement lors de l'acceptation d'un devis. CLOSED est terminal.
"""
import logging
from typing import Optional, Sequence

from marketplace.exceptions import InvalidTransitionException, WorkflowValidationException
from marketplace.rfqs.models import RFQ, RFQItem, RFQStatus

logger = logging.getLogger(__name__)

ALLOWED_RFQ_TRANSITIONS = {
    RFQStatus.OPEN: {RFQStatus.QUOTED, RFQStatus.CLOSED},
    RFQStatus.QUOTED: {RFQStatus.CLOSED},
    RFQStatus.CLOSED: set(),
}


def validate_items(items: Sequence) -> None:
    """Vérifie qu'une RFQ soumise contient au moins un article de quantité >= 1."""
    if not items:
        raise WorkflowValidationException("Impossible de créer une RFQ sans articles.")
    errors = [
        f"Article {index}: quantité {item.quantity} invalide (minimum 1)."
        for index, item in enumerate(items)
        if item.quantity < 1
    ]
    if errors:
        raise WorkflowValidationException("Articles de RFQ invalides.", errors=errors)


def ensure_transition(rfq: RFQ, target: RFQStatus) -> None:
    if target not in ALLOWED_RFQ_TRANSITIONS[rfq.status]:
        logger.warning(f"[RFQLifecycle] Transition refusée pour RFQ {rfq.id}: {rfq.status.value} -> {target.value}")
        if rfq.status == RFQStatus.CLOSED:
            detail = "une RFQ clôturée ne peut pas être rouverte."
        else:
            detail = f"passage vers '{target.value}' non autorisé."
        raise InvalidTransitionException("RFQ", rfq.id, rfq.status.value, detail)


def ensure_accepts_quotes(rfq: RFQ) -> None:
    """Un nouveau devis ne peut être rattaché qu'à une RFQ OPEN ou QUOTED."""
    if rfq.status == RFQStatus.CLOSED:
        raise InvalidTransitionException("RFQ", rfq.id, rfq.status.value, "la RFQ est clôturée, aucun nouveau devis n'est accepté.")


def ensure_items_editable(rfq: RFQ, quote_count: int) -> None:
    if rfq.status != RFQStatus.OPEN or quote_count > 0:
        raise InvalidTransitionException(
            "RFQ", rfq.id, rfq.status.value,
            "les articles ne sont plus modifiables une fois qu'un devis existe."
        )


def status_after_quote_sent(rfq: RFQ) -> Optional[RFQStatus]:
    """Statut cible lorsqu'un devis de cette RFQ est envoyé au client (None si inchangé)."""
    ensure_accepts_quotes(rfq)
    if rfq.status == RFQStatus.OPEN:
        return RFQStatus.QUOTED
    return None
