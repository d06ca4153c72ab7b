from enum import Enum
from typing import List

from pydantic import Field

from marketplace.schemas import EntityModel


class RFQStatus(str, Enum):
    OPEN = "OPEN"
    QUOTED = "QUOTED"
    CLOSED = "CLOSED"


class RFQItem(EntityModel):
    """Ligne d'une demande de devis (type valeur, sans identité propre)."""
    product_id: str
    quantity: int = Field(..., ge=1)
    notes: str = ""


class RFQ(EntityModel):
    """Demande de devis (Request For Quote) émise par un client."""
    id: str
    client_id: str
    items: List[RFQItem] = []
    status: RFQStatus = RFQStatus.OPEN
    date: str
