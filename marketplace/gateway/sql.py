"""
Passerelle SQL (mode DATABASE): SQLAlchemy async + tables SQLModel, lectures via FastCRUD.

Hors portée atomique, chaque opération ouvre sa propre session et la commite.
Dans `atomic()`, les opérations de la tâche asyncio courante partagent une session
unique, commitée en sortie de portée ou annulée si une exception la traverse.
La session est portée par une ContextVar: les requêtes concurrentes servies par
la même passerelle gardent chacune leur propre transaction.
"""
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from contextvars import ContextVar
from decimal import Decimal
from typing import Any, AsyncIterator, Collection, Dict, List, Optional, Type

from fastcrud import FastCRUD
from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from marketplace.config import MODE_DATABASE, settings
from marketplace.exceptions import GatewayException
from marketplace.gateway.base import AbstractPersistenceGateway, generate_id, stale_status, status_values
from marketplace.gateway.mapping import from_wire, to_wire
from marketplace.gateway.tables import (
    MarginSettingRecord, OrderRecord, ProductRecord, QuoteRecord,
    RFQItemRecord, RFQRecord, UserRecord,
)
from marketplace.margins.models import MarginSetting
from marketplace.orders.models import Order
from marketplace.products.models import Product
from marketplace.quotes.models import Quote
from marketplace.rfqs.models import RFQ
from marketplace.schemas import EntityModel
from marketplace.users.models import User

logger = logging.getLogger(__name__)


def _filters(**values: Any) -> Dict[str, Any]:
    return {column: getattr(value, "value", value) for column, value in values.items() if value is not None}


class SqlGateway(AbstractPersistenceGateway):
    mode = MODE_DATABASE
    supports_transactions = True

    def __init__(self, session_factory: sessionmaker, page_size: int = settings.GATEWAY_PAGE_SIZE,
                 engine: Optional[AsyncEngine] = None):
        self._session_factory = session_factory
        self.engine = engine
        self._page_size = page_size
        # Session de la portée atomique ouverte par la tâche courante
        self._atomic_session: ContextVar[Optional[AsyncSession]] = ContextVar(
            f"sql_gateway_session_{id(self)}", default=None
        )
        self._users = FastCRUD(UserRecord)
        self._products = FastCRUD(ProductRecord)
        self._rfqs = FastCRUD(RFQRecord)
        self._quotes = FastCRUD(QuoteRecord)
        self._orders = FastCRUD(OrderRecord)

    # --- Sessions et transactions ---

    @asynccontextmanager
    async def _session_scope(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Session de l'opération; toute SQLAlchemyError devient GatewayException."""
        atomic_session = self._atomic_session.get()
        if atomic_session is not None:
            try:
                yield atomic_session
            except SQLAlchemyError as e:
                logger.error(f"[SqlGateway] Erreur DB pendant '{operation}' (portée atomique): {e}", exc_info=True)
                raise GatewayException(operation, str(e)) from e
            return

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"[SqlGateway] Erreur DB pendant '{operation}', rollback: {e}", exc_info=True)
                raise GatewayException(operation, str(e)) from e
            except Exception:
                await session.rollback()
                raise

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        if self._atomic_session.get() is not None:
            # Portée imbriquée: la transaction englobante décide
            yield
            return
        async with self._session_factory() as session:
            token = self._atomic_session.set(session)
            try:
                yield
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"[SqlGateway] Échec du commit de la transaction, rollback: {e}", exc_info=True)
                raise GatewayException("atomic", str(e)) from e
            except Exception:
                await session.rollback()
                logger.warning("[SqlGateway] Exception dans une portée atomique, transaction annulée.")
                raise
            finally:
                self._atomic_session.reset(token)

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()

    # --- Utilitaires génériques ---

    async def _fetch_rows(self, crud: FastCRUD, session: AsyncSession, **filters: Any) -> List[Dict[str, Any]]:
        """Toutes les lignes correspondant aux filtres, lues page par page."""
        rows: List[Dict[str, Any]] = []
        while True:
            result = await crud.get_multi(
                db=session,
                offset=len(rows),
                limit=self._page_size,
                sort_columns=["id"],
                sort_orders=["asc"],
                **_filters(**filters),
            )
            page = result.get("data", [])
            rows.extend(page)
            if len(page) < self._page_size or len(rows) >= result.get("total_count", len(rows)):
                return rows

    async def _list(self, crud: FastCRUD, model: Type[EntityModel], operation: str, **filters: Any) -> List[Any]:
        async with self._session_scope(operation) as session:
            rows = await self._fetch_rows(crud, session, **filters)
        return [from_wire(model, row) for row in rows]

    async def _get(self, crud: FastCRUD, model: Type[EntityModel], operation: str, entity_id: str) -> Optional[Any]:
        async with self._session_scope(operation) as session:
            row = await crud.get(db=session, id=entity_id)
        return from_wire(model, row) if row else None

    async def _insert(self, table: Type[SQLModel], model: Type[EntityModel], prefix: str,
                      operation: str, data: Dict[str, Any]) -> Any:
        values = dict(data)
        values.setdefault("id", generate_id(prefix))
        record = table(**to_wire(model, values))
        async with self._session_scope(operation) as session:
            session.add(record)
            await session.flush()
            row = record.model_dump()
        return from_wire(model, row)

    @staticmethod
    async def _write_row(session: AsyncSession, table: Type[SQLModel], entity: str, operation: str,
                         entity_id: str, columns: Dict[str, Any],
                         expected_statuses: Optional[Collection[Any]] = None) -> SQLModel:
        """Applique `columns` à la ligne `entity_id`.

        Avec `expected_statuses`, l'écriture est un UPDATE ... WHERE status IN (...):
        la vérification et l'écriture sont un seul ordre SQL, protégé par le verrou
        de ligne de la base face aux écritures concurrentes.
        """
        if expected_statuses is None:
            record = await session.get(table, entity_id)
            if record is None:
                raise GatewayException(operation, f"enregistrement {entity_id} introuvable.")
            for column, value in columns.items():
                setattr(record, column, value)
            session.add(record)
            await session.flush()
            return record

        statement = (
            update(table)
            .where(table.id == entity_id, table.status.in_(status_values(expected_statuses)))
            .values(**(columns or {"status": table.status}))
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(statement)
        record = await session.get(table, entity_id, populate_existing=True)
        if record is None:
            raise GatewayException(operation, f"enregistrement {entity_id} introuvable.")
        if result.rowcount == 0:
            logger.warning(f"[SqlGateway] '{operation}' refusé: {entity} {entity_id} est passé en '{record.status}'.")
            raise stale_status(entity, entity_id, record.status, expected_statuses)
        return record

    async def _update(self, table: Type[SQLModel], model: Type[EntityModel], entity: str, operation: str,
                      entity_id: str, partial: Dict[str, Any],
                      expected_statuses: Optional[Collection[Any]] = None) -> Any:
        columns = to_wire(model, partial)
        async with self._session_scope(operation) as session:
            record = await self._write_row(session, table, entity, operation, entity_id, columns, expected_statuses)
            row = record.model_dump()
        return from_wire(model, row)

    # --- Utilisateurs ---

    async def list_users(self, *, role: Optional[str] = None) -> List[User]:
        return await self._list(self._users, User, "list_users", role=role)

    async def get_user(self, user_id: str) -> Optional[User]:
        return await self._get(self._users, User, "get_user", user_id)

    async def update_user(self, user_id: str, partial: Dict[str, Any]) -> User:
        return await self._update(UserRecord, User, "Utilisateur", "update_user", user_id, partial)

    # --- Produits ---

    async def list_products(self, *, status: Optional[str] = None, category: Optional[str] = None,
                            supplier_id: Optional[str] = None) -> List[Product]:
        return await self._list(self._products, Product, "list_products",
                                status=status, category=category, supplier_id=supplier_id)

    async def get_product(self, product_id: str) -> Optional[Product]:
        return await self._get(self._products, Product, "get_product", product_id)

    async def create_product(self, data: Dict[str, Any]) -> Product:
        return await self._insert(ProductRecord, Product, "PRD", "create_product", data)

    async def update_product(self, product_id: str, partial: Dict[str, Any]) -> Product:
        return await self._update(ProductRecord, Product, "Produit", "update_product", product_id, partial)

    # --- RFQ (les articles vivent dans la table rfq_items) ---

    @staticmethod
    async def _items_by_rfq(session: AsyncSession, rfq_ids: List[str]) -> Dict[str, List[Dict[str, Any]]]:
        grouped: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        if not rfq_ids:
            return grouped
        statement = (
            select(RFQItemRecord)
            .where(RFQItemRecord.rfq_id.in_(rfq_ids))
            .order_by(RFQItemRecord.rfq_id, RFQItemRecord.position)
        )
        result = await session.execute(statement)
        for item in result.scalars().all():
            grouped[item.rfq_id].append(item.model_dump())
        return grouped

    @staticmethod
    def _add_items(session: AsyncSession, rfq_id: str, items: List[Dict[str, Any]]) -> None:
        for position, item in enumerate(items):
            session.add(RFQItemRecord(rfq_id=rfq_id, position=position, **item))

    async def list_rfqs(self, *, client_id: Optional[str] = None, status: Optional[str] = None) -> List[RFQ]:
        async with self._session_scope("list_rfqs") as session:
            rows = await self._fetch_rows(self._rfqs, session, client_id=client_id, status=status)
            items = await self._items_by_rfq(session, [row["id"] for row in rows])
        return [from_wire(RFQ, {**row, "rfq_items": items.get(row["id"], [])}) for row in rows]

    async def get_rfq(self, rfq_id: str) -> Optional[RFQ]:
        async with self._session_scope("get_rfq") as session:
            row = await self._rfqs.get(db=session, id=rfq_id)
            if not row:
                return None
            items = await self._items_by_rfq(session, [rfq_id])
        return from_wire(RFQ, {**row, "rfq_items": items.get(rfq_id, [])})

    async def create_rfq(self, data: Dict[str, Any]) -> RFQ:
        values = dict(data)
        values.setdefault("id", generate_id("RFQ"))
        columns = to_wire(RFQ, values)
        items = columns.pop("rfq_items", [])
        async with self._session_scope("create_rfq") as session:
            session.add(RFQRecord(**columns))
            await session.flush()
            self._add_items(session, columns["id"], items)
            await session.flush()
        return await self.get_rfq(columns["id"])

    async def update_rfq(self, rfq_id: str, partial: Dict[str, Any], *,
                         expected_statuses: Optional[Collection[Any]] = None) -> RFQ:
        columns = to_wire(RFQ, partial)
        items = columns.pop("rfq_items", None)
        async with self._session_scope("update_rfq") as session:
            await self._write_row(session, RFQRecord, "RFQ", "update_rfq", rfq_id, columns, expected_statuses)
            if items is not None:
                await session.execute(delete(RFQItemRecord).where(RFQItemRecord.rfq_id == rfq_id))
                self._add_items(session, rfq_id, items)
            await session.flush()
        return await self.get_rfq(rfq_id)

    # --- Devis ---

    async def list_quotes(self, *, rfq_id: Optional[str] = None, supplier_id: Optional[str] = None,
                          status: Optional[str] = None) -> List[Quote]:
        return await self._list(self._quotes, Quote, "list_quotes",
                                rfq_id=rfq_id, supplier_id=supplier_id, status=status)

    async def get_quote(self, quote_id: str) -> Optional[Quote]:
        return await self._get(self._quotes, Quote, "get_quote", quote_id)

    async def create_quote(self, data: Dict[str, Any]) -> Quote:
        return await self._insert(QuoteRecord, Quote, "Q", "create_quote", data)

    async def update_quote(self, quote_id: str, partial: Dict[str, Any], *,
                           expected_statuses: Optional[Collection[Any]] = None) -> Quote:
        return await self._update(QuoteRecord, Quote, "Devis", "update_quote", quote_id, partial, expected_statuses)

    # --- Commandes ---

    async def list_orders(self, *, client_id: Optional[str] = None, supplier_id: Optional[str] = None,
                          quote_id: Optional[str] = None, status: Optional[str] = None) -> List[Order]:
        return await self._list(self._orders, Order, "list_orders",
                                client_id=client_id, supplier_id=supplier_id, quote_id=quote_id, status=status)

    async def get_order(self, order_id: str) -> Optional[Order]:
        return await self._get(self._orders, Order, "get_order", order_id)

    async def create_order(self, data: Dict[str, Any]) -> Order:
        # La contrainte UNIQUE sur quote_id rejette une seconde commande pour le même devis
        return await self._insert(OrderRecord, Order, "ORD", "create_order", data)

    # --- Marges ---

    async def list_margin_settings(self) -> List[MarginSetting]:
        async with self._session_scope("list_margin_settings") as session:
            result = await session.execute(select(MarginSettingRecord).order_by(MarginSettingRecord.id))
            rows = [record.model_dump() for record in result.scalars().all()]
        return [from_wire(MarginSetting, row) for row in rows]

    async def update_margin_setting(self, category: Optional[str], percent: Decimal) -> bool:
        if category is None:
            condition = MarginSettingRecord.category.is_(None)
        else:
            condition = MarginSettingRecord.category == category
        async with self._session_scope("update_margin_setting") as session:
            result = await session.execute(select(MarginSettingRecord).where(condition))
            record = result.scalars().first()
            if record is None:
                record = MarginSettingRecord(category=category, margin_percent=percent, is_default=category is None)
            else:
                record.margin_percent = percent
            session.add(record)
            await session.flush()
        logger.info(f"[SqlGateway] Marge {'globale' if category is None else category} enregistrée: {percent}%")
        return True
