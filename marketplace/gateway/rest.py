"""
Passerelle distante (mode REMOTE): API REST de type PostgREST / Supabase via httpx.

Chaque table est exposée sous `/rest/v1/<table>`; les filtres s'écrivent
`?colonne=eq.valeur`. Cette passerelle n'est pas transactionnelle: `atomic()`
reste le no-op de la classe de base et la réparation idempotente de
l'OrderMaterializer couvre les écritures partielles.
"""
import json
import logging
from decimal import Decimal
from typing import Any, Collection, Dict, List, Optional, Type

import httpx

from marketplace.config import MODE_REMOTE, settings
from marketplace.exceptions import GatewayException
from marketplace.gateway.base import AbstractPersistenceGateway, generate_id, stale_status, status_values
from marketplace.gateway.mapping import TABLES, from_wire, to_wire
from marketplace.margins.models import MarginSetting
from marketplace.orders.models import Order
from marketplace.products.models import Product
from marketplace.quotes.models import Quote
from marketplace.rfqs.models import RFQ, RFQItem
from marketplace.schemas import EntityModel
from marketplace.users.models import User

logger = logging.getLogger(__name__)

RFQ_SELECT = "*,rfq_items(*)"


def _eq_filters(**values: Any) -> Dict[str, str]:
    return {column: f"eq.{getattr(value, 'value', value)}" for column, value in values.items() if value is not None}


class RestGateway(AbstractPersistenceGateway):
    mode = MODE_REMOTE
    supports_transactions = False

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = settings.GATEWAY_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        page_size: int = settings.GATEWAY_PAGE_SIZE,
    ):
        self._page_size = page_size
        self._client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/rest/v1",
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    # --- Requêtes HTTP ---

    async def _send(self, method: str, table: str, operation: str, *,
                    params: Optional[Dict[str, str]] = None, body: Any = None,
                    prefer: Optional[str] = None) -> httpx.Response:
        headers = {"Prefer": prefer} if prefer else None
        content = json.dumps(body, default=str) if body is not None else None
        try:
            response = await self._client.request(method, f"/{table}", params=params, content=content, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"[RestGateway] '{operation}' refusé par le serveur ({e.response.status_code}): {e.response.text}", exc_info=True)
            raise GatewayException(operation, f"réponse HTTP {e.response.status_code}.") from e
        except httpx.HTTPError as e:
            logger.error(f"[RestGateway] '{operation}' a échoué: {e}", exc_info=True)
            raise GatewayException(operation, str(e) or type(e).__name__) from e
        return response

    @staticmethod
    def _parse(response: httpx.Response, operation: str) -> Any:
        if not response.content:
            return None
        try:
            return response.json(parse_float=Decimal)
        except ValueError as e:
            raise GatewayException(operation, "réponse JSON invalide.") from e

    async def _request(self, method: str, table: str, operation: str, **kwargs: Any) -> Any:
        return self._parse(await self._send(method, table, operation, **kwargs), operation)

    @staticmethod
    def _total_count(response: httpx.Response) -> Optional[int]:
        # Content-Range: 0-999/4210 (total absent ou "*" si le serveur ne compte pas)
        _, _, total = response.headers.get("Content-Range", "").partition("/")
        return int(total) if total.isdigit() else None

    async def _fetch_rows(self, table: str, operation: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        """Toutes les lignes de la requête, page par page (limit/offset)."""
        rows: List[Dict[str, Any]] = []
        while True:
            page_params = {**params, "limit": str(self._page_size), "offset": str(len(rows))}
            response = await self._send("GET", table, operation, params=page_params, prefer="count=exact")
            page = self._parse(response, operation) or []
            rows.extend(page)
            total = self._total_count(response)
            if not page or (total is not None and len(rows) >= total) or (total is None and len(page) < self._page_size):
                return rows

    async def _list(self, model: Type[EntityModel], operation: str, select: str = "*", **filters: Any) -> List[Any]:
        params = {"select": select, "order": "id.asc", **_eq_filters(**filters)}
        rows = await self._fetch_rows(TABLES[model], operation, params)
        return [from_wire(model, row) for row in rows]

    async def _get(self, model: Type[EntityModel], operation: str, entity_id: str, select: str = "*") -> Optional[Any]:
        rows = await self._request("GET", TABLES[model], operation, params={"select": select, **_eq_filters(id=entity_id)})
        return from_wire(model, rows[0]) if rows else None

    async def _insert(self, model: Type[EntityModel], prefix: str, operation: str, data: Dict[str, Any]) -> Any:
        values = dict(data)
        values.setdefault("id", generate_id(prefix))
        rows = await self._request("POST", TABLES[model], operation, body=[to_wire(model, values)],
                                   prefer="return=representation")
        if not rows:
            raise GatewayException(operation, "aucun enregistrement retourné.")
        return from_wire(model, rows[0])

    async def _patch(self, model: Type[EntityModel], entity: str, operation: str, entity_id: str,
                     columns: Dict[str, Any], expected_statuses: Optional[Collection[Any]] = None) -> Dict[str, Any]:
        """PATCH d'une ligne; avec `expected_statuses`, filtré par `status=in.(...)` côté serveur."""
        params = _eq_filters(id=entity_id)
        if expected_statuses is not None:
            params["status"] = f"in.({','.join(status_values(expected_statuses))})"
        rows = await self._request("PATCH", TABLES[model], operation, params=params,
                                   body=columns, prefer="return=representation")
        if rows:
            return rows[0]
        current = await self._request("GET", TABLES[model], operation,
                                      params={"select": "id,status", **_eq_filters(id=entity_id)})
        if not current:
            raise GatewayException(operation, f"enregistrement {entity_id} introuvable.")
        logger.warning(f"[RestGateway] '{operation}' refusé: {entity} {entity_id} est passé en '{current[0].get('status')}'.")
        raise stale_status(entity, entity_id, current[0].get("status"), expected_statuses or ())

    async def _update(self, model: Type[EntityModel], entity: str, operation: str, entity_id: str,
                      partial: Dict[str, Any], expected_statuses: Optional[Collection[Any]] = None) -> Any:
        row = await self._patch(model, entity, operation, entity_id, to_wire(model, partial), expected_statuses)
        return from_wire(model, row)

    # --- Utilisateurs ---

    async def list_users(self, *, role: Optional[str] = None) -> List[User]:
        return await self._list(User, "list_users", role=role)

    async def get_user(self, user_id: str) -> Optional[User]:
        return await self._get(User, "get_user", user_id)

    async def update_user(self, user_id: str, partial: Dict[str, Any]) -> User:
        return await self._update(User, "Utilisateur", "update_user", user_id, partial)

    # --- Produits ---

    async def list_products(self, *, status: Optional[str] = None, category: Optional[str] = None,
                            supplier_id: Optional[str] = None) -> List[Product]:
        return await self._list(Product, "list_products", status=status, category=category, supplier_id=supplier_id)

    async def get_product(self, product_id: str) -> Optional[Product]:
        return await self._get(Product, "get_product", product_id)

    async def create_product(self, data: Dict[str, Any]) -> Product:
        return await self._insert(Product, "PRD", "create_product", data)

    async def update_product(self, product_id: str, partial: Dict[str, Any]) -> Product:
        return await self._update(Product, "Produit", "update_product", product_id, partial)

    # --- RFQ (articles embarqués via la relation rfq_items) ---

    async def _insert_items(self, rfq_id: str, items: List[Dict[str, Any]], operation: str) -> None:
        if not items:
            return
        rows = [{**item, "rfq_id": rfq_id, "position": position} for position, item in enumerate(items)]
        await self._request("POST", TABLES[RFQItem], operation, body=rows)

    async def list_rfqs(self, *, client_id: Optional[str] = None, status: Optional[str] = None) -> List[RFQ]:
        return await self._list(RFQ, "list_rfqs", select=RFQ_SELECT, client_id=client_id, status=status)

    async def get_rfq(self, rfq_id: str) -> Optional[RFQ]:
        return await self._get(RFQ, "get_rfq", rfq_id, select=RFQ_SELECT)

    async def create_rfq(self, data: Dict[str, Any]) -> RFQ:
        values = dict(data)
        values.setdefault("id", generate_id("RFQ"))
        columns = to_wire(RFQ, values)
        items = columns.pop("rfq_items", [])
        await self._request("POST", TABLES[RFQ], "create_rfq", body=[columns])
        await self._insert_items(columns["id"], items, "create_rfq")
        rfq = await self.get_rfq(columns["id"])
        if rfq is None:
            raise GatewayException("create_rfq", "RFQ introuvable après création.")
        return rfq

    async def update_rfq(self, rfq_id: str, partial: Dict[str, Any], *,
                         expected_statuses: Optional[Collection[Any]] = None) -> RFQ:
        columns = to_wire(RFQ, partial)
        items = columns.pop("rfq_items", None)
        if columns or expected_statuses is not None:
            await self._patch(RFQ, "RFQ", "update_rfq", rfq_id, columns, expected_statuses)
        if items is not None:
            await self._request("DELETE", TABLES[RFQItem], "update_rfq", params=_eq_filters(rfq_id=rfq_id))
            await self._insert_items(rfq_id, items, "update_rfq")
        rfq = await self.get_rfq(rfq_id)
        if rfq is None:
            raise GatewayException("update_rfq", f"enregistrement {rfq_id} introuvable.")
        return rfq

    # --- Devis ---

    async def list_quotes(self, *, rfq_id: Optional[str] = None, supplier_id: Optional[str] = None,
                          status: Optional[str] = None) -> List[Quote]:
        return await self._list(Quote, "list_quotes", rfq_id=rfq_id, supplier_id=supplier_id, status=status)

    async def get_quote(self, quote_id: str) -> Optional[Quote]:
        return await self._get(Quote, "get_quote", quote_id)

    async def create_quote(self, data: Dict[str, Any]) -> Quote:
        return await self._insert(Quote, "Q", "create_quote", data)

    async def update_quote(self, quote_id: str, partial: Dict[str, Any], *,
                           expected_statuses: Optional[Collection[Any]] = None) -> Quote:
        return await self._update(Quote, "Devis", "update_quote", quote_id, partial, expected_statuses)

    # --- Commandes ---

    async def list_orders(self, *, client_id: Optional[str] = None, supplier_id: Optional[str] = None,
                          quote_id: Optional[str] = None, status: Optional[str] = None) -> List[Order]:
        return await self._list(Order, "list_orders", client_id=client_id, supplier_id=supplier_id,
                                quote_id=quote_id, status=status)

    async def get_order(self, order_id: str) -> Optional[Order]:
        return await self._get(Order, "get_order", order_id)

    async def create_order(self, data: Dict[str, Any]) -> Order:
        return await self._insert(Order, "ORD", "create_order", data)

    # --- Marges ---

    async def list_margin_settings(self) -> List[MarginSetting]:
        rows = await self._request("GET", TABLES[MarginSetting], "list_margin_settings", params={"select": "*"})
        return [from_wire(MarginSetting, row) for row in rows or []]

    async def update_margin_setting(self, category: Optional[str], percent: Decimal) -> bool:
        table = TABLES[MarginSetting]
        params = {"category": "is.null"} if category is None else _eq_filters(category=category)
        existing = await self._request("GET", table, "update_margin_setting", params={"select": "*", **params})
        record = to_wire(MarginSetting, {"category": category, "margin_percent": percent, "is_default": category is None})
        if existing:
            await self._request("PATCH", table, "update_margin_setting", params=params, body=record)
        else:
            await self._request("POST", table, "update_margin_setting", body=[record])
        logger.info(f"[RestGateway] Marge {'globale' if category is None else category} enregistrée: {percent}%")
        return True
