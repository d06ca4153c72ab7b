"""
Passerelle en mémoire utilisée en mode MOCK.

Les entités sont gardées dans des dictionnaires ordonnés par identifiant.
`atomic()` restaure l'état d'avant la portée si une exception la traverse.
"""
import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, AsyncIterator, Collection, Dict, List, Optional, Type, TypeVar

from pydantic import ValidationError

from marketplace.config import MODE_MOCK
from marketplace.exceptions import GatewayException
from marketplace.gateway import mock_data
from marketplace.gateway.base import AbstractPersistenceGateway, generate_id, stale_status
from marketplace.margins.models import MarginSetting
from marketplace.orders.models import Order
from marketplace.products.models import Product
from marketplace.quotes.models import Quote
from marketplace.rfqs.models import RFQ
from marketplace.schemas import EntityModel
from marketplace.users.models import User
from marketplace.workflow.models import WorkflowSnapshot

logger = logging.getLogger(__name__)

EntityT = TypeVar("EntityT", bound=EntityModel)


def _matches(entity: EntityModel, **filters: Any) -> bool:
    return all(value is None or getattr(entity, field) == value for field, value in filters.items())


class InMemoryGateway(AbstractPersistenceGateway):
    mode = MODE_MOCK
    supports_transactions = True

    def __init__(self, snapshot: Optional[WorkflowSnapshot] = None):
        if snapshot is None:
            snapshot = WorkflowSnapshot(
                users=mock_data.mock_users(),
                products=mock_data.mock_products(),
                rfqs=mock_data.mock_rfqs(),
                quotes=mock_data.mock_quotes(),
                orders=mock_data.mock_orders(),
                margin_settings=mock_data.mock_margin_settings(),
            )
        self._users: Dict[str, User] = {user.id: user for user in snapshot.users}
        self._products: Dict[str, Product] = {product.id: product for product in snapshot.products}
        self._rfqs: Dict[str, RFQ] = {rfq.id: rfq for rfq in snapshot.rfqs}
        self._quotes: Dict[str, Quote] = {quote.id: quote for quote in snapshot.quotes}
        self._orders: Dict[str, Order] = {order.id: order for order in snapshot.orders}
        self._margins: Dict[Optional[str], MarginSetting] = {m.category: m for m in snapshot.margin_settings}
        logger.info(f"[InMemoryGateway] Initialisée avec {len(self._rfqs)} RFQ, {len(self._quotes)} devis, {len(self._orders)} commandes.")

    # --- Transactions ---

    def _collections(self) -> Dict[str, dict]:
        return {
            "_users": self._users, "_products": self._products, "_rfqs": self._rfqs,
            "_quotes": self._quotes, "_orders": self._orders, "_margins": self._margins,
        }

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        # Les entités sont immuables: une copie superficielle des dictionnaires suffit
        saved = {name: dict(collection) for name, collection in self._collections().items()}
        try:
            yield
        except Exception:
            for name, collection in saved.items():
                setattr(self, name, collection)
            logger.warning("[InMemoryGateway] Exception dans une portée atomique, état restauré.")
            raise

    # --- Utilitaires ---

    @staticmethod
    def _build(model: Type[EntityT], operation: str, values: Dict[str, Any]) -> EntityT:
        try:
            return model.model_validate(values)
        except ValidationError as e:
            raise GatewayException(operation, f"données invalides: {e.error_count()} erreur(s).") from e

    def _merge(self, entity: EntityT, operation: str, partial: Dict[str, Any]) -> EntityT:
        model = type(entity)
        unknown = set(partial) - set(model.model_fields)
        if unknown:
            raise GatewayException(operation, f"champs inconnus {sorted(unknown)}.")
        return self._build(model, operation, {**entity.model_dump(), **partial})

    @staticmethod
    def _require(collection: Dict[str, EntityT], entity_id: str, operation: str) -> EntityT:
        entity = collection.get(entity_id)
        if entity is None:
            raise GatewayException(operation, f"enregistrement {entity_id} introuvable.")
        return entity

    def _insert(self, collection: Dict[str, EntityT], model: Type[EntityT], prefix: str,
                operation: str, data: Dict[str, Any]) -> EntityT:
        values = dict(data)
        values.setdefault("id", generate_id(prefix))
        if values["id"] in collection:
            raise GatewayException(operation, f"l'identifiant {values['id']} existe déjà.")
        entity = self._build(model, operation, values)
        collection[entity.id] = entity
        return entity

    # --- Utilisateurs ---

    async def list_users(self, *, role: Optional[str] = None) -> List[User]:
        return [user for user in self._users.values() if _matches(user, role=role)]

    async def get_user(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    async def update_user(self, user_id: str, partial: Dict[str, Any]) -> User:
        user = self._merge(self._require(self._users, user_id, "update_user"), "update_user", partial)
        self._users[user_id] = user
        return user

    # --- Produits ---

    async def list_products(self, *, status: Optional[str] = None, category: Optional[str] = None,
                            supplier_id: Optional[str] = None) -> List[Product]:
        return [
            product for product in self._products.values()
            if _matches(product, status=status, category=category, supplier_id=supplier_id)
        ]

    async def get_product(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

    async def create_product(self, data: Dict[str, Any]) -> Product:
        return self._insert(self._products, Product, "PRD", "create_product", data)

    async def update_product(self, product_id: str, partial: Dict[str, Any]) -> Product:
        product = self._merge(self._require(self._products, product_id, "update_product"), "update_product", partial)
        self._products[product_id] = product
        return product

    # --- RFQ ---

    async def list_rfqs(self, *, client_id: Optional[str] = None, status: Optional[str] = None) -> List[RFQ]:
        return [rfq for rfq in self._rfqs.values() if _matches(rfq, client_id=client_id, status=status)]

    async def get_rfq(self, rfq_id: str) -> Optional[RFQ]:
        return self._rfqs.get(rfq_id)

    async def create_rfq(self, data: Dict[str, Any]) -> RFQ:
        return self._insert(self._rfqs, RFQ, "RFQ", "create_rfq", data)

    async def update_rfq(self, rfq_id: str, partial: Dict[str, Any], *,
                         expected_statuses: Optional[Collection[Any]] = None) -> RFQ:
        current = self._require(self._rfqs, rfq_id, "update_rfq")
        if expected_statuses is not None and current.status not in expected_statuses:
            raise stale_status("RFQ", rfq_id, current.status, expected_statuses)
        rfq = self._merge(current, "update_rfq", partial)
        self._rfqs[rfq_id] = rfq
        return rfq

    # --- Devis ---

    async def list_quotes(self, *, rfq_id: Optional[str] = None, supplier_id: Optional[str] = None,
                          status: Optional[str] = None) -> List[Quote]:
        return [
            quote for quote in self._quotes.values()
            if _matches(quote, rfq_id=rfq_id, supplier_id=supplier_id, status=status)
        ]

    async def get_quote(self, quote_id: str) -> Optional[Quote]:
        return self._quotes.get(quote_id)

    async def create_quote(self, data: Dict[str, Any]) -> Quote:
        return self._insert(self._quotes, Quote, "Q", "create_quote", data)

    async def update_quote(self, quote_id: str, partial: Dict[str, Any], *,
                           expected_statuses: Optional[Collection[Any]] = None) -> Quote:
        current = self._require(self._quotes, quote_id, "update_quote")
        if expected_statuses is not None and current.status not in expected_statuses:
            raise stale_status("Devis", quote_id, current.status, expected_statuses)
        quote = self._merge(current, "update_quote", partial)
        self._quotes[quote_id] = quote
        return quote

    # --- Commandes ---

    async def list_orders(self, *, client_id: Optional[str] = None, supplier_id: Optional[str] = None,
                          quote_id: Optional[str] = None, status: Optional[str] = None) -> List[Order]:
        return [
            order for order in self._orders.values()
            if _matches(order, client_id=client_id, supplier_id=supplier_id, quote_id=quote_id, status=status)
        ]

    async def get_order(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    async def create_order(self, data: Dict[str, Any]) -> Order:
        quote_id = data.get("quote_id")
        if quote_id is not None and any(order.quote_id == quote_id for order in self._orders.values()):
            raise GatewayException("create_order", f"une commande existe déjà pour le devis {quote_id}.")
        return self._insert(self._orders, Order, "ORD", "create_order", data)

    # --- Marges ---

    async def list_margin_settings(self) -> List[MarginSetting]:
        return list(self._margins.values())

    async def update_margin_setting(self, category: Optional[str], percent: Decimal) -> bool:
        self._margins[category] = self._build(
            MarginSetting, "update_margin_setting",
            {"category": category, "margin_percent": percent, "is_default": category is None},
        )
        return True
