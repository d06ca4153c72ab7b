from decimal import Decimal
from typing import List

from marketplace.margins.models import MarginSetting
from marketplace.orders.models import Order
from marketplace.products.models import Product
from marketplace.quotes.models import Quote
from marketplace.rfqs.models import RFQ
from marketplace.schemas import EntityModel
from marketplace.users.models import User


class WorkflowSnapshot(EntityModel):
    """Copie immuable de l'état du WorkflowStore (lue par l'UI, persistée en mode local)."""
    users: List[User] = []
    products: List[Product] = []
    rfqs: List[RFQ] = []
    quotes: List[Quote] = []
    orders: List[Order] = []
    margin_settings: List[MarginSetting] = []


class MarginPreview(EntityModel):
    """Marge qu'un envoi appliquerait maintenant à un devis, sans rien écrire."""
    quote_id: str
    category: str
    percent: Decimal
    source: str
    final_price: Decimal
