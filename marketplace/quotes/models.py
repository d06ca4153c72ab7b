from enum import Enum
from typing import Optional
from decimal import Decimal

from pydantic import Field

from marketplace.margins.models import InheritedMargin, MarginOverride
from marketplace.schemas import EntityModel


class QuoteStatus(str, Enum):
    PENDING_ADMIN = "PENDING_ADMIN"
    SENT_TO_CLIENT = "SENT_TO_CLIENT"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class Quote(EntityModel):
    """Réponse chiffrée d'un fournisseur à une RFQ."""
    id: str
    rfq_id: str
    supplier_id: str
    supplier_price: Decimal = Field(..., ge=0)  # Base de coût fixée par le fournisseur
    lead_time: str = ""
    margin_override: MarginOverride = Field(default_factory=InheritedMargin, discriminator="type")
    margin_percent: Decimal = Field(Decimal("0"), ge=0)  # Marge appliquée lors de la dernière affectation
    final_price: Optional[Decimal] = Field(None, ge=0)  # Dérivé, jamais édité directement
    status: QuoteStatus = QuoteStatus.PENDING_ADMIN
