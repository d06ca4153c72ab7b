from decimal import Decimal
from typing import Literal, Optional, Union

from pydantic import Field

from marketplace.schemas import EntityModel


class ManualMargin(EntityModel):
    """Marge fixée explicitement par un admin pour un devis précis."""
    type: Literal["manual"] = "manual"
    percent: Decimal = Field(..., ge=0)


class InheritedMargin(EntityModel):
    """Le devis hérite de la marge de sa catégorie ou de la marge globale."""
    type: Literal["inherited"] = "inherited"


MarginOverride = Union[ManualMargin, InheritedMargin]


class MarginSetting(EntityModel):
    """Marge par défaut: globale (category=None) ou par catégorie."""
    category: Optional[str] = None
    margin_percent: Decimal = Field(..., ge=0)
    is_default: bool = False


class ResolvedMargin(EntityModel):
    """Résultat de la résolution: pourcentage effectif et sa provenance."""
    percent: Decimal
    source: str
