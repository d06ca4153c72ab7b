"""
Tables SQLModel du mode DATABASE. Les colonnes suivent les noms snake_case
définis dans `marketplace.gateway.mapping`.
"""
from decimal import Decimal
from typing import Optional

from sqlmodel import Field, SQLModel


class UserRecord(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(primary_key=True)
    role: str = Field(index=True)
    name: str = ""
    email: str = ""
    company_name: str = ""
    verified: bool = False
    status: Optional[str] = None
    kyc_status: Optional[str] = None
    public_id: Optional[str] = None
    rating: Optional[Decimal] = Field(default=None, max_digits=3, decimal_places=2)
    date_joined: Optional[str] = None


class ProductRecord(SQLModel, table=True):
    __tablename__ = "products"

    id: str = Field(primary_key=True)
    supplier_id: str = Field(index=True)
    name: str = ""
    description: str = ""
    category: str = Field(index=True)
    image: Optional[str] = None
    status: str = "PENDING"
    cost_price: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)
    sku: Optional[str] = None


class RFQRecord(SQLModel, table=True):
    __tablename__ = "rfqs"

    id: str = Field(primary_key=True)
    client_id: str = Field(index=True)
    status: str = "OPEN"
    date: str


class RFQItemRecord(SQLModel, table=True):
    __tablename__ = "rfq_items"

    id: Optional[int] = Field(default=None, primary_key=True)
    rfq_id: str = Field(foreign_key="rfqs.id", index=True)
    position: int = 0  # Ordre de l'article dans la RFQ
    product_id: str
    quantity: int
    notes: str = ""


class QuoteRecord(SQLModel, table=True):
    __tablename__ = "quotes"

    id: str = Field(primary_key=True)
    rfq_id: str = Field(foreign_key="rfqs.id", index=True)
    supplier_id: str = Field(index=True)
    supplier_price: Decimal = Field(max_digits=14, decimal_places=2)
    lead_time: str = ""
    manual_margin_percent: Optional[Decimal] = Field(default=None, max_digits=6, decimal_places=2)  # NULL = marge héritée
    margin_percent: Decimal = Field(default=Decimal("0"), max_digits=6, decimal_places=2)
    final_price: Optional[Decimal] = Field(default=None, max_digits=14, decimal_places=2)
    status: str = "PENDING_ADMIN"


class OrderRecord(SQLModel, table=True):
    __tablename__ = "orders"

    id: str = Field(primary_key=True)
    quote_id: Optional[str] = Field(default=None, unique=True)  # Une seule commande par devis
    client_id: str = Field(index=True)
    supplier_id: str = Field(index=True)
    amount: Decimal = Field(max_digits=14, decimal_places=2)
    status: str = "PENDING_PAYMENT"
    date: str


class MarginSettingRecord(SQLModel, table=True):
    __tablename__ = "margin_settings"

    id: Optional[int] = Field(default=None, primary_key=True)
    category: Optional[str] = Field(default=None, unique=True)  # NULL = marge globale
    margin_percent: Decimal = Field(max_digits=6, decimal_places=2)
    is_default: bool = False
