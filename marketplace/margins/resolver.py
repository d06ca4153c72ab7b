"""
Résolution de la marge effective d'un devis et calcul du prix client.

Ordre de priorité (la première règle applicable l'emporte):
1. marge manuelle posée sur le devis  -> source "manual"
2. marge de la catégorie du devis     -> source "category:<nom>"
3. marge globale de la plateforme     -> source "global"
"""
from decimal import Decimal
from typing import Mapping, Optional, Sequence

from marketplace.exceptions import WorkflowValidationException
from marketplace.margins.config import (
    CURRENCY_QUANTUM, CURRENCY_ROUNDING, GENERAL_CATEGORY,
    SOURCE_CATEGORY_PREFIX, SOURCE_GLOBAL, SOURCE_MANUAL,
)
from marketplace.margins.models import ManualMargin, ResolvedMargin
from marketplace.products.models import Product
from marketplace.quotes.models import Quote
from marketplace.rfqs.models import RFQ


def category_of(rfq: Optional[RFQ], products: Sequence[Product]) -> str:
    """Catégorie du produit du premier article de la RFQ, ou 'General' à défaut."""
    if rfq is None or not rfq.items:
        return GENERAL_CATEGORY
    product_id = rfq.items[0].product_id
    for product in products:
        if product.id == product_id:
            return product.category or GENERAL_CATEGORY
    return GENERAL_CATEGORY


def resolve_margin(
    quote: Quote,
    category_margins: Mapping[str, Decimal],
    global_margin: Decimal,
    category: str,
) -> ResolvedMargin:
    override = quote.margin_override
    if isinstance(override, ManualMargin):
        return ResolvedMargin(percent=override.percent, source=SOURCE_MANUAL)
    if category in category_margins:
        return ResolvedMargin(percent=category_margins[category], source=f"{SOURCE_CATEGORY_PREFIX}{category}")
    return ResolvedMargin(percent=global_margin, source=SOURCE_GLOBAL)


def compute_final_price(supplier_price: Decimal, percent: Decimal) -> Decimal:
    """finalPrice = round(supplierPrice * (1 + percent/100)), arrondi monétaire à 2 décimales."""
    supplier_price = Decimal(supplier_price)
    percent = Decimal(percent)
    if supplier_price < 0:
        raise WorkflowValidationException(f"Prix fournisseur négatif: {supplier_price}.")
    if percent < 0:
        raise WorkflowValidationException(f"Marge négative: {percent}%.")
    raw = supplier_price * (Decimal(1) + percent / Decimal(100))
    return raw.quantize(CURRENCY_QUANTUM, rounding=CURRENCY_ROUNDING)
