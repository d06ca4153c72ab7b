from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, AsyncIterator, Collection, Dict, List, Optional
from uuid import uuid4

from marketplace.exceptions import InvalidTransitionException
from marketplace.margins.models import MarginSetting
from marketplace.orders.models import Order
from marketplace.products.models import Product
from marketplace.quotes.models import Quote
from marketplace.rfqs.models import RFQ
from marketplace.users.models import User


def generate_id(prefix: str) -> str:
    """Identifiant lisible pour une nouvelle entité (ex: `RFQ-3F9A1C2B`)."""
    return f"{prefix}-{uuid4().hex[:8].upper()}"


def status_values(statuses: Collection[Any]) -> List[str]:
    return sorted(getattr(status, "value", status) for status in statuses)


def stale_status(entity: str, entity_id: str, current: Any, expected: Collection[Any]) -> InvalidTransitionException:
    """Écriture conditionnelle refusée: le statut stocké n'est plus celui lu par l'appelant."""
    current_value = getattr(current, "value", current)
    return InvalidTransitionException(
        entity, entity_id, str(current_value),
        f"statut attendu {status_values(expected)}, modifié entre-temps par un autre acteur.",
    )


class AbstractPersistenceGateway(ABC):
    """Interface abstraite pour la passerelle de persistance (mock, base SQL ou API distante).

    Toutes les méthodes lèvent GatewayException en cas d'échec du stockage.
    Les méthodes `get_*` retournent None si l'entité n'existe pas.
    Les données `data` / `partial` sont indexées par attribut Python (`supplier_price`).

    `update_rfq` et `update_quote` acceptent `expected_statuses`: l'écriture n'a lieu
    que si le statut stocké en fait partie, vérifié et écrit en une seule opération
    côté stockage. Sinon InvalidTransitionException est levée et rien n'est écrit.
    Les `list_*` retournent toutes les lignes, page par page si nécessaire.
    """

    mode: str = ""
    supports_transactions: bool = False

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        """Portée atomique pour une opération multi-entités (no-op par défaut)."""
        yield

    async def close(self) -> None:
        """Libère les ressources de la passerelle."""
        return None

    # --- Utilisateurs ---

    @abstractmethod
    async def list_users(self, *, role: Optional[str] = None) -> List[User]:
        raise NotImplementedError

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        raise NotImplementedError

    @abstractmethod
    async def update_user(self, user_id: str, partial: Dict[str, Any]) -> User:
        raise NotImplementedError

    # --- Produits ---

    @abstractmethod
    async def list_products(self, *, status: Optional[str] = None, category: Optional[str] = None,
                            supplier_id: Optional[str] = None) -> List[Product]:
        raise NotImplementedError

    @abstractmethod
    async def get_product(self, product_id: str) -> Optional[Product]:
        raise NotImplementedError

    @abstractmethod
    async def create_product(self, data: Dict[str, Any]) -> Product:
        raise NotImplementedError

    @abstractmethod
    async def update_product(self, product_id: str, partial: Dict[str, Any]) -> Product:
        raise NotImplementedError

    # --- RFQ ---

    @abstractmethod
    async def list_rfqs(self, *, client_id: Optional[str] = None, status: Optional[str] = None) -> List[RFQ]:
        raise NotImplementedError

    @abstractmethod
    async def get_rfq(self, rfq_id: str) -> Optional[RFQ]:
        raise NotImplementedError

    @abstractmethod
    async def create_rfq(self, data: Dict[str, Any]) -> RFQ:
        """Crée une RFQ et ses articles (`items`)."""
        raise NotImplementedError

    @abstractmethod
    async def update_rfq(self, rfq_id: str, partial: Dict[str, Any], *,
                         expected_statuses: Optional[Collection[Any]] = None) -> RFQ:
        raise NotImplementedError

    # --- Devis ---

    @abstractmethod
    async def list_quotes(self, *, rfq_id: Optional[str] = None, supplier_id: Optional[str] = None,
                          status: Optional[str] = None) -> List[Quote]:
        raise NotImplementedError

    @abstractmethod
    async def get_quote(self, quote_id: str) -> Optional[Quote]:
        raise NotImplementedError

    @abstractmethod
    async def create_quote(self, data: Dict[str, Any]) -> Quote:
        raise NotImplementedError

    @abstractmethod
    async def update_quote(self, quote_id: str, partial: Dict[str, Any], *,
                           expected_statuses: Optional[Collection[Any]] = None) -> Quote:
        raise NotImplementedError

    # --- Commandes ---

    @abstractmethod
    async def list_orders(self, *, client_id: Optional[str] = None, supplier_id: Optional[str] = None,
                          quote_id: Optional[str] = None, status: Optional[str] = None) -> List[Order]:
        raise NotImplementedError

    @abstractmethod
    async def get_order(self, order_id: str) -> Optional[Order]:
        raise NotImplementedError

    @abstractmethod
    async def create_order(self, data: Dict[str, Any]) -> Order:
        """Crée une commande. Une seule commande par `quote_id`."""
        raise NotImplementedError

    # --- Marges ---

    @abstractmethod
    async def list_margin_settings(self) -> List[MarginSetting]:
        raise NotImplementedError

    @abstractmethod
    async def update_margin_setting(self, category: Optional[str], percent: Decimal) -> bool:
        """Upsert de la marge globale (category=None) ou d'une catégorie."""
        raise NotImplementedError
