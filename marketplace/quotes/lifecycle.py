"""
Gestion du cycle de vie des devis.

PENDING_ADMIN -> SENT_TO_CLIENT (envoi admin, marge résolue)
SENT_TO_CLIENT -> ACCEPTED (acceptation client, via l'OrderMaterializer)
SENT_TO_CLIENT -> REJECTED (refus client)
ACCEPTED et REJECTED sont terminaux.
"""
import logging
from decimal import Decimal

from marketplace.exceptions import InvalidTransitionException, WorkflowValidationException
from marketplace.margins.models import InheritedMargin, ManualMargin, ResolvedMargin
from marketplace.margins.resolver import compute_final_price
from marketplace.quotes.models import Quote, QuoteStatus

logger = logging.getLogger(__name__)

ALLOWED_QUOTE_TRANSITIONS = {
    QuoteStatus.PENDING_ADMIN: {QuoteStatus.SENT_TO_CLIENT},
    QuoteStatus.SENT_TO_CLIENT: {QuoteStatus.ACCEPTED, QuoteStatus.REJECTED},
    QuoteStatus.ACCEPTED: set(),
    QuoteStatus.REJECTED: set(),
}


def ensure_transition(quote: Quote, target: QuoteStatus) -> None:
    if target not in ALLOWED_QUOTE_TRANSITIONS[quote.status]:
        logger.warning(f"[QuoteLifecycle] Transition refusée pour devis {quote.id}: {quote.status.value} -> {target.value}")
        raise InvalidTransitionException(
            "Devis", quote.id, quote.status.value,
            f"passage vers '{target.value}' non autorisé."
        )


def validate_supplier_price(supplier_price: Decimal) -> Decimal:
    if supplier_price is None or Decimal(supplier_price) < 0:
        raise WorkflowValidationException(f"Prix fournisseur invalide: {supplier_price}.")
    return Decimal(supplier_price)


def with_margin_override(quote: Quote, percent: Decimal) -> Quote:
    """Pose une marge manuelle; seulement tant que le devis attend l'admin."""
    if quote.status != QuoteStatus.PENDING_ADMIN:
        raise InvalidTransitionException("Devis", quote.id, quote.status.value, "la marge ne peut plus être modifiée après l'envoi au client.")
    if percent is None or Decimal(percent) < 0:
        raise WorkflowValidationException(f"Marge invalide: {percent}.")
    return quote.model_copy(update={"margin_override": ManualMargin(percent=Decimal(percent))})


def without_margin_override(quote: Quote) -> Quote:
    if quote.status != QuoteStatus.PENDING_ADMIN:
        raise InvalidTransitionException("Devis", quote.id, quote.status.value, "la marge ne peut plus être modifiée après l'envoi au client.")
    return quote.model_copy(update={"margin_override": InheritedMargin()})


def sent(quote: Quote, margin: ResolvedMargin) -> Quote:
    """Devis envoyé au client avec la marge résolue et le prix final dérivé."""
    ensure_transition(quote, QuoteStatus.SENT_TO_CLIENT)
    if quote.supplier_price is None or quote.supplier_price <= 0:
        raise InvalidTransitionException("Devis", quote.id, quote.status.value, "le prix fournisseur doit être strictement positif pour l'envoi.")
    return quote.model_copy(update={
        "margin_percent": margin.percent,
        "final_price": compute_final_price(quote.supplier_price, margin.percent),
        "status": QuoteStatus.SENT_TO_CLIENT,
    })


def accepted(quote: Quote) -> Quote:
    ensure_transition(quote, QuoteStatus.ACCEPTED)
    return quote.model_copy(update={"status": QuoteStatus.ACCEPTED})


def rejected(quote: Quote) -> Quote:
    ensure_transition(quote, QuoteStatus.REJECTED)
    return quote.model_copy(update={"status": QuoteStatus.REJECTED})
