"""
Jeu de données de démonstration utilisé en mode MOCK (aucun stockage distant configuré).
"""
from decimal import Decimal
from typing import List

from marketplace.config import settings
from marketplace.margins.models import ManualMargin, MarginSetting
from marketplace.orders.models import Order, OrderStatus
from marketplace.products.models import Product, ProductStatus
from marketplace.quotes.models import Quote, QuoteStatus
from marketplace.rfqs.models import RFQ, RFQItem, RFQStatus
from marketplace.users.models import KycStatus, User, UserRole, UserStatus


def mock_users() -> List[User]:
    return [
        User(id="u1", name="John Client", email="client@mwrd.com", role=UserRole.CLIENT, company_name="Tech Solutions Ltd",
             verified=True, public_id="Client-8492", status=UserStatus.ACTIVE, date_joined="2023-01-10"),
        User(id="u2", name="Sarah Supplier", email="supplier@mwrd.com", role=UserRole.SUPPLIER, company_name="Global Parts Inc",
             verified=True, public_id="Supplier-3921", rating=Decimal("4.8"), status=UserStatus.APPROVED,
             kyc_status=KycStatus.VERIFIED, date_joined="2023-01-15"),
        User(id="u3", name="Admin Alice", email="admin@mwrd.com", role=UserRole.ADMIN, company_name="mwrd HQ", verified=True),
        User(id="u4", name="Indie Parts Co", email="indie@mwrd.com", role=UserRole.SUPPLIER, company_name="Indie Parts Co",
             verified=True, public_id="Supplier-1102", rating=Decimal("4.5"), status=UserStatus.APPROVED,
             kyc_status=KycStatus.VERIFIED, date_joined="2023-05-20"),
        User(id="u5", name="Teal Tech Supplies", email="teal@mwrd.com", role=UserRole.SUPPLIER, company_name="Teal Tech",
             verified=True, public_id="Supplier-8854", rating=Decimal("4.9"), status=UserStatus.APPROVED,
             kyc_status=KycStatus.VERIFIED, date_joined="2023-06-10"),
        User(id="sup_global_imports", name="Global Admin", email="admin@globalimports.com", role=UserRole.SUPPLIER,
             company_name="Global Imports Inc.", verified=False, status=UserStatus.PENDING,
             kyc_status=KycStatus.IN_REVIEW, date_joined="2023-10-01"),
    ]


def mock_products() -> List[Product]:
    return [
        Product(id="p1", supplier_id="u2", name="Precision Runner X1", category="Footwear",
                status=ProductStatus.APPROVED, cost_price=Decimal("85"), sku="FTW-84301"),
        Product(id="p2", supplier_id="u2", name="ChronoGuard Watch", category="Accessories",
                status=ProductStatus.APPROVED, cost_price=Decimal("120"), sku="WCH-10556"),
        Product(id="p3", supplier_id="u2", name="AudioLuxe Pro", category="Electronics",
                status=ProductStatus.APPROVED, cost_price=Decimal("180"), sku="AUD-78921"),
        Product(id="p4", supplier_id="u2", name="ErgoChair 2000", category="Furniture",
                status=ProductStatus.APPROVED, cost_price=Decimal("250"), sku="CHR-33214"),
        Product(id="p5", supplier_id="u2", name="CulinaryMaster Knives", category="Kitchenware",
                status=ProductStatus.APPROVED, cost_price=Decimal("95"), sku="KTN-01123"),
        Product(id="p6", supplier_id="u2", name="Stiletto Glam", category="Footwear",
                status=ProductStatus.APPROVED, cost_price=Decimal("110"), sku="SHO-99874"),
        Product(id="p7", supplier_id="u4", name="Smart Monitor 27", category="Electronics",
                status=ProductStatus.PENDING, cost_price=Decimal("210"), sku="MON-27001"),
    ]


def mock_rfqs() -> List[RFQ]:
    return [
        RFQ(id="r1", client_id="u1", items=[RFQItem(product_id="p1", quantity=50, notes="Urgent delivery required")],
            status=RFQStatus.OPEN, date="2023-10-25"),
        RFQ(id="r2", client_id="u1", items=[RFQItem(product_id="p2", quantity=10)],
            status=RFQStatus.QUOTED, date="2023-10-20"),
        RFQ(id="r3", client_id="u1", items=[RFQItem(product_id="p3", quantity=25, notes="Standard packaging"),
                                            RFQItem(product_id="p4", quantity=5)],
            status=RFQStatus.CLOSED, date="2023-09-15"),
    ]


def mock_quotes() -> List[Quote]:
    return [
        Quote(id="q1", rfq_id="r2", supplier_id="u2", supplier_price=Decimal("1200"), lead_time="14 Days",
              margin_override=ManualMargin(percent=Decimal("10")), margin_percent=Decimal("10"),
              final_price=Decimal("1320.00"), status=QuoteStatus.SENT_TO_CLIENT),
        Quote(id="q3", rfq_id="r2", supplier_id="u4", supplier_price=Decimal("1150"), lead_time="10 Days",
              margin_override=ManualMargin(percent=Decimal("12")), margin_percent=Decimal("12"),
              final_price=Decimal("1288.00"), status=QuoteStatus.SENT_TO_CLIENT),
        Quote(id="q4", rfq_id="r2", supplier_id="u5", supplier_price=Decimal("1250"), lead_time="7 Days",
              margin_override=ManualMargin(percent=Decimal("8")), margin_percent=Decimal("8"),
              final_price=Decimal("1350.00"), status=QuoteStatus.SENT_TO_CLIENT),
        Quote(id="q2", rfq_id="r3", supplier_id="u2", supplier_price=Decimal("5500"), lead_time="5 Days",
              margin_override=ManualMargin(percent=Decimal("15")), margin_percent=Decimal("15"),
              final_price=Decimal("6325.00"), status=QuoteStatus.ACCEPTED),
    ]


def mock_orders() -> List[Order]:
    return [
        Order(id="ORD-9876", client_id="u1", supplier_id="u2", amount=Decimal("2450.00"),
              status=OrderStatus.IN_TRANSIT, date="2023-10-28"),
        Order(id="ORD-9878", client_id="u1", supplier_id="u4", amount=Decimal("1850.00"),
              status=OrderStatus.PENDING_PAYMENT, date="2023-10-29"),
        Order(id="ORD-9875", client_id="u1", supplier_id="u2", amount=Decimal("1120.50"),
              status=OrderStatus.DELIVERED, date="2023-10-15"),
        Order(id="ORD-9874", client_id="u1", supplier_id="u5", amount=Decimal("5800.00"),
              status=OrderStatus.CANCELLED, date="2023-10-01"),
    ]


def mock_margin_settings() -> List[MarginSetting]:
    margins = [MarginSetting(category=None, margin_percent=settings.DEFAULT_GLOBAL_MARGIN, is_default=True)]
    margins.extend(
        MarginSetting(category=category, margin_percent=percent)
        for category, percent in settings.DEFAULT_CATEGORY_MARGINS.items()
    )
    return margins
