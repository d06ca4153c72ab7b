from enum import Enum
from typing import Optional
from decimal import Decimal

from pydantic import Field

from marketplace.quotes.models import Quote
from marketplace.schemas import EntityModel


class OrderStatus(str, Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class Order(EntityModel):
    """Commande créée à l'acceptation d'un devis. Le montant est figé à la création."""
    id: str
    quote_id: Optional[str] = None
    client_id: str
    supplier_id: str
    amount: Decimal = Field(..., ge=0)
    status: OrderStatus = OrderStatus.PENDING_PAYMENT
    date: str


class AcceptanceResult(EntityModel):
    """Résultat de l'acceptation d'un devis: le devis accepté et sa commande."""
    quote: Quote
    order: Order

