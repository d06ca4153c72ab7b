"""Payloads acceptés par l'API du workflow (camelCase ou snake_case)."""
from decimal import Decimal
from typing import List, Optional

from marketplace.schemas import RequestModel


class RFQItemInput(RequestModel):
    # Pas de contrainte ici: le WorkflowStore valide et renvoie une erreur métier
    product_id: str
    quantity: int
    notes: str = ""


class CreateRFQRequest(RequestModel):
    client_id: str
    items: List[RFQItemInput]


class UpdateRFQItemsRequest(RequestModel):
    items: List[RFQItemInput]


class SubmitQuoteRequest(RequestModel):
    rfq_id: str
    supplier_id: str
    supplier_price: Decimal
    lead_time: str = ""


class MarginOverrideRequest(RequestModel):
    percent: Decimal


class SendQuoteRequest(RequestModel):
    """`margin_percent` renseigné = approbation avec marge manuelle."""
    margin_percent: Optional[Decimal] = None


class MarginSettingRequest(RequestModel):
    category: Optional[str] = None  # None = marge globale
    margin_percent: Decimal


class SubmitProductRequest(RequestModel):
    supplier_id: str
    name: str
    category: str
    description: str = ""
    image: Optional[str] = None
    cost_price: Optional[Decimal] = None
    sku: Optional[str] = None
