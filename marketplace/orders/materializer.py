"""
Acceptation d'un devis par le client: transition composite qui accepte le devis,
clôture la RFQ et crée la commande, une seule fois par devis.
"""
import logging
from datetime import date

from marketplace.exceptions import DanglingReferenceException, InvalidTransitionException, NotFoundException
from marketplace.gateway.base import AbstractPersistenceGateway
from marketplace.orders.config import INITIAL_ORDER_STATUS
from marketplace.orders.models import AcceptanceResult, Order
from marketplace.quotes import lifecycle as quote_lifecycle
from marketplace.quotes.models import Quote, QuoteStatus
from marketplace.rfqs import lifecycle as rfq_lifecycle
from marketplace.rfqs.models import RFQ, RFQStatus

logger = logging.getLogger(__name__)

ACCEPTABLE_QUOTE_STATUSES = frozenset({QuoteStatus.SENT_TO_CLIENT})
CLOSABLE_RFQ_STATUSES = frozenset(
    status for status, targets in rfq_lifecycle.ALLOWED_RFQ_TRANSITIONS.items() if RFQStatus.CLOSED in targets
)


class OrderMaterializer:
    def __init__(self, gateway: AbstractPersistenceGateway):
        self.gateway = gateway

    async def accept_quote(self, quote_id: str) -> AcceptanceResult:
        """Accepte un devis SENT_TO_CLIENT et matérialise sa commande.

        Rejouer l'acceptation d'un devis déjà ACCEPTED est sans effet: la commande
        existante est retournée, ou créée si une tentative précédente n'a pas abouti.

        Raises:
            NotFoundException: devis inconnu.
            InvalidTransitionException: devis non envoyé au client, ou RFQ déjà clôturée.
            DanglingReferenceException: la RFQ du devis n'existe pas.
            GatewayException: échec du stockage (réessayable).
        """
        quote = await self.gateway.get_quote(quote_id)
        if quote is None:
            raise NotFoundException("Devis", quote_id)
        if quote.status == QuoteStatus.ACCEPTED:
            return await self._repair(quote)

        accepted_quote = quote_lifecycle.accepted(quote)
        rfq = await self._parent_rfq(quote)
        rfq_lifecycle.ensure_transition(rfq, RFQStatus.CLOSED)
        if accepted_quote.final_price is None:
            raise InvalidTransitionException("Devis", quote.id, quote.status.value, "aucun prix final n'a été calculé.")

        try:
            async with self.gateway.atomic():
                accepted_quote = await self.gateway.update_quote(
                    quote.id, {"status": QuoteStatus.ACCEPTED}, expected_statuses=ACCEPTABLE_QUOTE_STATUSES,
                )
                await self._close_rfq(accepted_quote, rfq)
                order = await self._create_order(accepted_quote, rfq)
        except InvalidTransitionException:
            current = await self.gateway.get_quote(quote.id)
            if current is not None and current.status == QuoteStatus.ACCEPTED:
                # Acceptation concurrente du même devis par un autre acteur
                return await self._repair(current)
            raise

        logger.info(f"[OrderMaterializer] Devis {quote.id} accepté, RFQ {rfq.id} clôturée, commande {order.id} créée ({order.amount}).")
        return AcceptanceResult(quote=accepted_quote, order=order)

    async def _close_rfq(self, accepted_quote: Quote, rfq: RFQ) -> None:
        """Clôture la RFQ si elle est encore ouverte; sinon un devis concurrent l'a emporté."""
        try:
            await self.gateway.update_rfq(rfq.id, {"status": RFQStatus.CLOSED}, expected_statuses=CLOSABLE_RFQ_STATUSES)
        except InvalidTransitionException:
            logger.warning(f"[OrderMaterializer] RFQ {rfq.id} clôturée par un autre devis, acceptation de {accepted_quote.id} annulée.")
            if not self.gateway.supports_transactions:
                await self.gateway.update_quote(
                    accepted_quote.id, {"status": QuoteStatus.SENT_TO_CLIENT},
                    expected_statuses={QuoteStatus.ACCEPTED},
                )
            raise

    async def _parent_rfq(self, quote: Quote) -> RFQ:
        rfq = await self.gateway.get_rfq(quote.rfq_id)
        if rfq is None:
            logger.error(f"[OrderMaterializer] Le devis {quote.id} référence la RFQ {quote.rfq_id} qui n'existe pas.")
            raise DanglingReferenceException("Devis", quote.id, "RFQ", quote.rfq_id)
        return rfq

    async def _repair(self, quote: Quote) -> AcceptanceResult:
        existing = await self.gateway.list_orders(quote_id=quote.id)
        if existing:
            logger.info(f"[OrderMaterializer] Devis {quote.id} déjà accepté, commande {existing[0].id} retournée.")
            return AcceptanceResult(quote=quote, order=existing[0])

        logger.warning(f"[OrderMaterializer] Devis {quote.id} accepté sans commande, reprise de la matérialisation.")
        rfq = await self._parent_rfq(quote)
        async with self.gateway.atomic():
            if rfq.status != RFQStatus.CLOSED:
                await self.gateway.update_rfq(rfq.id, {"status": RFQStatus.CLOSED})
            order = await self._create_order(quote, rfq)
        return AcceptanceResult(quote=quote, order=order)

    async def _create_order(self, quote: Quote, rfq: RFQ) -> Order:
        try:
            return await self.gateway.create_order({
                "quote_id": quote.id,
                "client_id": rfq.client_id,
                "supplier_id": quote.supplier_id,
                "amount": quote.final_price,
                "status": INITIAL_ORDER_STATUS,
                "date": date.today().isoformat(),
            })
        except Exception as e:
            logger.error(f"[OrderMaterializer] Création de la commande du devis {quote.id} impossible: {e}", exc_info=True)
            raise
