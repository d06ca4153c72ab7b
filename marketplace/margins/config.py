"""
Configuration spécifique au module Margins.
"""
from decimal import Decimal, ROUND_HALF_UP

# Catégorie sentinelle lorsqu'aucun produit ne peut être rattaché au devis
GENERAL_CATEGORY: str = "General"

# Arrondi monétaire appliqué à tous les prix clients
CURRENCY_QUANTUM: Decimal = Decimal("0.01")
CURRENCY_ROUNDING: str = ROUND_HALF_UP

SOURCE_MANUAL: str = "manual"
SOURCE_CATEGORY_PREFIX: str = "category:"
SOURCE_GLOBAL: str = "global"
