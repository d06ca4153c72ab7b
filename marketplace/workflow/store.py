"""
WorkflowStore: unique propriétaire de l'état en mémoire du workflow RFQ -> Devis -> Commande.

Les appelants lisent des instantanés immuables (`snapshot()`) et n'invoquent que
des opérations d'intention (créer une RFQ, envoyer un devis, l'accepter...).
Chaque opération relit l'entité visée auprès de la passerelle, applique les
règles des gestionnaires de cycle de vie puis écrit le résultat.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence

from marketplace.config import settings
from marketplace.exceptions import (
    DanglingReferenceException, GatewayException, InvalidTransitionException, NotFoundException,
    WorkflowValidationException,
)
from marketplace.gateway.base import AbstractPersistenceGateway
from marketplace.gateway.storage import SnapshotStorage
from marketplace.margins.config import GENERAL_CATEGORY
from marketplace.margins.models import InheritedMargin, MarginSetting, ResolvedMargin
from marketplace.margins.resolver import category_of, compute_final_price, resolve_margin
from marketplace.orders.materializer import OrderMaterializer
from marketplace.orders.models import AcceptanceResult, Order
from marketplace.products.models import Product, ProductStatus
from marketplace.quotes import lifecycle as quote_lifecycle
from marketplace.quotes.models import Quote, QuoteStatus
from marketplace.rfqs import lifecycle as rfq_lifecycle
from marketplace.rfqs.models import RFQ, RFQItem, RFQStatus
from marketplace.users.models import KycStatus, User, UserRole, UserStatus
from marketplace.workflow.models import MarginPreview, WorkflowSnapshot
from marketplace.workflow.schemas import RFQItemInput

logger = logging.getLogger(__name__)


class WorkflowStore:
    def __init__(
        self,
        gateway: AbstractPersistenceGateway,
        storage: Optional[SnapshotStorage] = None,
        default_global_margin: Optional[Decimal] = None,
        default_category_margins: Optional[Mapping[str, Decimal]] = None,
    ):
        self.gateway = gateway
        self.storage = storage  # Renseigné uniquement en mode MOCK
        self.materializer = OrderMaterializer(gateway)
        self._default_global_margin = (
            settings.DEFAULT_GLOBAL_MARGIN if default_global_margin is None else Decimal(default_global_margin)
        )
        self._default_category_margins = dict(
            settings.DEFAULT_CATEGORY_MARGINS if default_category_margins is None else default_category_margins
        )
        self._users: Dict[str, User] = {}
        self._products: Dict[str, Product] = {}
        self._rfqs: Dict[str, RFQ] = {}
        self._quotes: Dict[str, Quote] = {}
        self._orders: Dict[str, Order] = {}
        self._margins: Dict[Optional[str], MarginSetting] = {}

    # ======================================================
    # Chargement et instantanés
    # ======================================================

    async def load(self) -> WorkflowSnapshot:
        """(Re)charge toutes les collections depuis la passerelle."""
        self._users = {user.id: user for user in await self.gateway.list_users()}
        self._products = {product.id: product for product in await self.gateway.list_products()}
        self._rfqs = {rfq.id: rfq for rfq in await self.gateway.list_rfqs()}
        self._quotes = {quote.id: quote for quote in await self.gateway.list_quotes()}
        self._orders = {order.id: order for order in await self.gateway.list_orders()}
        self._margins = {setting.category: setting for setting in await self.gateway.list_margin_settings()}
        logger.info(
            f"[WorkflowStore] État chargé (mode {self.gateway.mode}): {len(self._rfqs)} RFQ, "
            f"{len(self._quotes)} devis, {len(self._orders)} commandes."
        )
        self._persist()
        return self.snapshot()

    refresh = load

    def snapshot(self) -> WorkflowSnapshot:
        return WorkflowSnapshot(
            users=list(self._users.values()),
            products=list(self._products.values()),
            rfqs=list(self._rfqs.values()),
            quotes=list(self._quotes.values()),
            orders=list(self._orders.values()),
            margin_settings=self.margin_settings(),
        )

    def _persist(self) -> None:
        if self.storage is not None:
            self.storage.save(self.gateway.mode, self.snapshot())

    # ======================================================
    # Marges
    # ======================================================

    @property
    def global_margin(self) -> Decimal:
        setting = self._margins.get(None)
        return setting.margin_percent if setting else self._default_global_margin

    @property
    def category_margins(self) -> Dict[str, Decimal]:
        margins = dict(self._default_category_margins)
        margins.update({category: s.margin_percent for category, s in self._margins.items() if category is not None})
        return margins

    def margin_settings(self) -> List[MarginSetting]:
        """Marges effectives: la globale d'abord, puis une par catégorie."""
        settings_list = [MarginSetting(category=None, margin_percent=self.global_margin, is_default=True)]
        settings_list.extend(
            MarginSetting(category=category, margin_percent=percent)
            for category, percent in self.category_margins.items()
        )
        return settings_list

    async def set_margin_setting(self, category: Optional[str], percent: Decimal) -> MarginSetting:
        """Upsert de la marge globale (category=None) ou d'une catégorie.

        Les devis déjà envoyés gardent le prix calculé lors de leur envoi.
        """
        if percent is None or Decimal(percent) < 0:
            raise WorkflowValidationException(f"Marge invalide: {percent}.")
        if category is not None and not category.strip():
            raise WorkflowValidationException("Le nom de catégorie ne peut pas être vide.")
        percent = Decimal(percent)
        if not await self.gateway.update_margin_setting(category, percent):
            raise GatewayException("update_margin_setting", "mise à jour refusée par le stockage.")
        setting = MarginSetting(category=category, margin_percent=percent, is_default=category is None)
        self._margins[category] = setting
        logger.info(f"[WorkflowStore] Marge {'globale' if category is None else category} fixée à {percent}%")
        self._persist()
        return setting

    async def _category_for(self, rfq: Optional[RFQ]) -> str:
        if rfq is None or not rfq.items:
            return GENERAL_CATEGORY
        product = await self.gateway.get_product(rfq.items[0].product_id)
        return category_of(rfq, [product] if product else [])

    async def _resolve(self, quote: Quote, rfq: Optional[RFQ]) -> ResolvedMargin:
        category = await self._category_for(rfq)
        return resolve_margin(quote, self.category_margins, self.global_margin, category)

    async def preview_margin(self, quote_id: str) -> MarginPreview:
        """Marge et prix qu'un envoi appliquerait maintenant, sans écriture."""
        quote = await self._require_quote(quote_id)
        rfq = await self.gateway.get_rfq(quote.rfq_id)
        category = await self._category_for(rfq)
        margin = resolve_margin(quote, self.category_margins, self.global_margin, category)
        return MarginPreview(
            quote_id=quote.id,
            category=category,
            percent=margin.percent,
            source=margin.source,
            final_price=compute_final_price(quote.supplier_price, margin.percent),
        )

    # ======================================================
    # Lectures de référence
    # ======================================================

    async def _require_user(self, user_id: str) -> User:
        user = await self.gateway.get_user(user_id)
        if user is None:
            raise NotFoundException("Utilisateur", user_id)
        return user

    async def _require_rfq(self, rfq_id: str) -> RFQ:
        rfq = await self.gateway.get_rfq(rfq_id)
        if rfq is None:
            raise NotFoundException("RFQ", rfq_id)
        return rfq

    async def _require_quote(self, quote_id: str) -> Quote:
        quote = await self.gateway.get_quote(quote_id)
        if quote is None:
            raise NotFoundException("Devis", quote_id)
        return quote

    async def _parent_rfq(self, quote: Quote) -> RFQ:
        rfq = await self.gateway.get_rfq(quote.rfq_id)
        if rfq is None:
            logger.error(f"[WorkflowStore] Le devis {quote.id} référence la RFQ {quote.rfq_id} qui n'existe pas.")
            raise DanglingReferenceException("Devis", quote.id, "RFQ", quote.rfq_id)
        return rfq

    async def _build_items(self, items: Sequence[RFQItemInput]) -> List[RFQItem]:
        rfq_lifecycle.validate_items(items)
        built = []
        for item in items:
            product = await self.gateway.get_product(item.product_id)
            if product is None:
                raise NotFoundException("Produit", item.product_id)
            if product.status != ProductStatus.APPROVED:
                raise WorkflowValidationException(f"Le produit {product.id} n'est pas approuvé ({product.status.value}).")
            built.append(RFQItem(product_id=item.product_id, quantity=item.quantity, notes=item.notes or ""))
        return built

    # ======================================================
    # RFQ
    # ======================================================

    async def create_rfq(self, client_id: str, items: Sequence[RFQItemInput]) -> RFQ:
        client = await self._require_user(client_id)
        if client.role != UserRole.CLIENT:
            raise WorkflowValidationException(f"L'utilisateur {client_id} n'est pas un client.")
        rfq_items = await self._build_items(items)
        rfq = await self.gateway.create_rfq({
            "client_id": client.id,
            "items": rfq_items,
            "status": RFQStatus.OPEN,
            "date": date.today().isoformat(),
        })
        self._rfqs[rfq.id] = rfq
        logger.info(f"[WorkflowStore] RFQ {rfq.id} créée par {client.id} ({len(rfq.items)} article(s)).")
        self._persist()
        return rfq

    async def update_rfq_items(self, rfq_id: str, items: Sequence[RFQItemInput]) -> RFQ:
        rfq = await self._require_rfq(rfq_id)
        quotes = await self.gateway.list_quotes(rfq_id=rfq.id)
        rfq_lifecycle.ensure_items_editable(rfq, len(quotes))
        rfq_items = await self._build_items(items)
        rfq = await self.gateway.update_rfq(rfq.id, {"items": rfq_items})
        self._rfqs[rfq.id] = rfq
        logger.info(f"[WorkflowStore] Articles de la RFQ {rfq.id} mis à jour.")
        self._persist()
        return rfq

    # ======================================================
    # Devis
    # ======================================================

    async def submit_quote(self, rfq_id: str, supplier_id: str, supplier_price: Decimal, lead_time: str = "") -> Quote:
        price = quote_lifecycle.validate_supplier_price(supplier_price)
        rfq = await self._require_rfq(rfq_id)
        rfq_lifecycle.ensure_accepts_quotes(rfq)
        supplier = await self._require_user(supplier_id)
        if supplier.role != UserRole.SUPPLIER:
            raise WorkflowValidationException(f"L'utilisateur {supplier_id} n'est pas un fournisseur.")
        quote = await self.gateway.create_quote({
            "rfq_id": rfq.id,
            "supplier_id": supplier.id,
            "supplier_price": price,
            "lead_time": lead_time or "",
            "margin_override": InheritedMargin(),
            "margin_percent": Decimal("0"),
            "final_price": None,
            "status": QuoteStatus.PENDING_ADMIN,
        })
        self._quotes[quote.id] = quote
        logger.info(f"[WorkflowStore] Devis {quote.id} soumis par {supplier.id} sur la RFQ {rfq.id} ({price}).")
        self._persist()
        return quote

    async def set_margin_override(self, quote_id: str, percent: Decimal) -> Quote:
        quote = quote_lifecycle.with_margin_override(await self._require_quote(quote_id), percent)
        quote = await self.gateway.update_quote(quote.id, {"margin_override": quote.margin_override})
        self._quotes[quote.id] = quote
        logger.info(f"[WorkflowStore] Marge manuelle de {percent}% posée sur le devis {quote.id}.")
        self._persist()
        return quote

    async def clear_margin_override(self, quote_id: str) -> Quote:
        quote = quote_lifecycle.without_margin_override(await self._require_quote(quote_id))
        quote = await self.gateway.update_quote(quote.id, {"margin_override": quote.margin_override})
        self._quotes[quote.id] = quote
        logger.info(f"[WorkflowStore] Marge manuelle retirée du devis {quote.id}.")
        self._persist()
        return quote

    async def send_quote(self, quote_id: str, margin_percent: Optional[Decimal] = None) -> Quote:
        """Envoie le devis au client avec la marge résolue.

        Avec `margin_percent`, la marge est d'abord posée comme marge manuelle
        (approbation admin avec marge).
        """
        quote = await self._require_quote(quote_id)
        if margin_percent is not None:
            quote = quote_lifecycle.with_margin_override(quote, margin_percent)
        else:
            quote_lifecycle.ensure_transition(quote, QuoteStatus.SENT_TO_CLIENT)
        rfq = await self._parent_rfq(quote)
        next_rfq_status = rfq_lifecycle.status_after_quote_sent(rfq)
        margin = await self._resolve(quote, rfq)
        sent_quote = quote_lifecycle.sent(quote, margin)

        async with self.gateway.atomic():
            sent_quote = await self.gateway.update_quote(sent_quote.id, {
                "margin_override": sent_quote.margin_override,
                "margin_percent": sent_quote.margin_percent,
                "final_price": sent_quote.final_price,
                "status": sent_quote.status,
            })
            if next_rfq_status is not None:
                rfq = await self.gateway.update_rfq(rfq.id, {"status": next_rfq_status})

        self._quotes[sent_quote.id] = sent_quote
        self._rfqs[rfq.id] = rfq
        logger.info(
            f"[WorkflowStore] Devis {sent_quote.id} envoyé au client: marge {margin.percent}% ({margin.source}), "
            f"prix final {sent_quote.final_price}."
        )
        self._persist()
        return sent_quote

    async def accept_quote(self, quote_id: str) -> AcceptanceResult:
        try:
            result = await self.materializer.accept_quote(quote_id)
        except (GatewayException, InvalidTransitionException):
            # Écritures partielles ou concurrentes: recaler les copies sur le stockage
            await self._resync_quote(quote_id)
            raise
        self._quotes[result.quote.id] = result.quote
        self._orders[result.order.id] = result.order
        rfq = await self.gateway.get_rfq(result.quote.rfq_id)
        if rfq is not None:
            self._rfqs[rfq.id] = rfq
        self._persist()
        return result

    async def _resync_quote(self, quote_id: str) -> None:
        try:
            quote = await self.gateway.get_quote(quote_id)
            if quote is None:
                return
            self._quotes[quote.id] = quote
            rfq = await self.gateway.get_rfq(quote.rfq_id)
            if rfq is not None:
                self._rfqs[rfq.id] = rfq
            for order in await self.gateway.list_orders(quote_id=quote.id):
                self._orders[order.id] = order
        except GatewayException as e:
            logger.warning(f"[WorkflowStore] Resynchronisation du devis {quote_id} impossible: {e.message}")
            return
        logger.info(f"[WorkflowStore] Devis {quote_id} resynchronisé après un échec d'acceptation ({quote.status.value}).")
        self._persist()

    async def reject_quote(self, quote_id: str) -> Quote:
        quote = quote_lifecycle.rejected(await self._require_quote(quote_id))
        quote = await self.gateway.update_quote(quote.id, {"status": quote.status})
        self._quotes[quote.id] = quote
        logger.info(f"[WorkflowStore] Devis {quote.id} refusé par le client.")
        self._persist()
        return quote

    async def get_order(self, order_id: str) -> Order:
        """Commande relue auprès du stockage de référence."""
        order = await self.gateway.get_order(order_id)
        if order is None:
            raise NotFoundException("Commande", order_id)
        self._orders[order.id] = order
        return order

    # ======================================================
    # Catalogue et fournisseurs
    # ======================================================

    async def submit_product(
        self,
        supplier_id: str,
        name: str,
        category: str,
        description: str = "",
        image: Optional[str] = None,
        cost_price: Optional[Decimal] = None,
        sku: Optional[str] = None,
    ) -> Product:
        """Un fournisseur propose un produit; il reste PENDING jusqu'à la revue admin."""
        supplier = await self._require_user(supplier_id)
        if supplier.role != UserRole.SUPPLIER:
            raise WorkflowValidationException(f"L'utilisateur {supplier_id} n'est pas un fournisseur.")
        errors = []
        if not name or not name.strip():
            errors.append("Le nom du produit est obligatoire.")
        if not category or not category.strip():
            errors.append("La catégorie du produit est obligatoire.")
        if cost_price is not None and Decimal(cost_price) < 0:
            errors.append(f"Prix de revient invalide: {cost_price}.")
        if errors:
            raise WorkflowValidationException(f"Produit invalide: {' '.join(errors)}", errors=errors)
        product = await self.gateway.create_product({
            "supplier_id": supplier.id,
            "name": name.strip(),
            "description": description or "",
            "category": category.strip(),
            "image": image,
            "status": ProductStatus.PENDING,
            "cost_price": cost_price,
            "sku": sku,
        })
        self._products[product.id] = product
        logger.info(f"[WorkflowStore] Produit {product.id} soumis par {supplier.id} ({product.category}), en attente de revue.")
        self._persist()
        return product

    async def _set_product_status(self, product_id: str, status: ProductStatus) -> Product:
        product = await self.gateway.get_product(product_id)
        if product is None:
            raise NotFoundException("Produit", product_id)
        product = await self.gateway.update_product(product.id, {"status": status})
        self._products[product.id] = product
        logger.info(f"[WorkflowStore] Produit {product.id} -> {status.value}")
        self._persist()
        return product

    async def approve_product(self, product_id: str) -> Product:
        return await self._set_product_status(product_id, ProductStatus.APPROVED)

    async def reject_product(self, product_id: str) -> Product:
        return await self._set_product_status(product_id, ProductStatus.REJECTED)

    async def _review_supplier(self, user_id: str, partial: dict) -> User:
        supplier = await self._require_user(user_id)
        if supplier.role != UserRole.SUPPLIER:
            raise WorkflowValidationException(f"L'utilisateur {user_id} n'est pas un fournisseur.")
        supplier = await self.gateway.update_user(supplier.id, partial)
        self._users[supplier.id] = supplier
        logger.info(f"[WorkflowStore] Fournisseur {supplier.id} -> {supplier.status.value if supplier.status else None}")
        self._persist()
        return supplier

    async def approve_supplier(self, user_id: str) -> User:
        return await self._review_supplier(user_id, {
            "status": UserStatus.APPROVED, "kyc_status": KycStatus.VERIFIED, "verified": True,
        })

    async def reject_supplier(self, user_id: str) -> User:
        return await self._review_supplier(user_id, {
            "status": UserStatus.REJECTED, "kyc_status": KycStatus.REJECTED,
        })
