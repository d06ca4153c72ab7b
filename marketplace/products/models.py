from enum import Enum
from typing import Optional
from decimal import Decimal

from pydantic import Field

from marketplace.schemas import EntityModel


class ProductStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Product(EntityModel):
    """Produit du catalogue d'un fournisseur. Seuls les produits APPROVED sont commandables."""
    id: str
    supplier_id: str  # Référence faible vers le User propriétaire
    name: str = ""
    description: str = ""
    category: str
    image: Optional[str] = None
    status: ProductStatus = ProductStatus.PENDING
    cost_price: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    sku: Optional[str] = None
