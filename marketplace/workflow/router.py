import logging
from typing import List, Optional

from fastapi import APIRouter, Body, HTTPException, Path, status

from marketplace.exceptions import (
    DanglingReferenceException, GatewayException, InvalidTransitionException,
    NotFoundException, WorkflowDomainException, WorkflowValidationException,
)
from marketplace.margins.models import MarginSetting
from marketplace.orders.models import AcceptanceResult, Order
from marketplace.products.models import Product
from marketplace.quotes.models import Quote
from marketplace.rfqs.models import RFQ
from marketplace.users.models import User
from marketplace.workflow.dependencies import WorkflowStoreDep
from marketplace.workflow.models import MarginPreview, WorkflowSnapshot
from marketplace.workflow.schemas import (
    CreateRFQRequest, MarginOverrideRequest, MarginSettingRequest,
    SendQuoteRequest, SubmitProductRequest, SubmitQuoteRequest, UpdateRFQItemsRequest,
)

logger = logging.getLogger(__name__)

# --- Création du Routeur ---
workflow_router = APIRouter()

# Type d'erreur métier -> code HTTP
ERROR_STATUS_CODES = {
    NotFoundException: status.HTTP_404_NOT_FOUND,
    InvalidTransitionException: status.HTTP_409_CONFLICT,
    WorkflowValidationException: status.HTTP_422_UNPROCESSABLE_ENTITY,
    DanglingReferenceException: status.HTTP_500_INTERNAL_SERVER_ERROR,
    GatewayException: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _http_error(e: WorkflowDomainException, action: str) -> HTTPException:
    status_code = ERROR_STATUS_CODES.get(type(e), status.HTTP_400_BAD_REQUEST)
    if status_code >= 500:
        logger.error(f"API {action}: {e.kind} - {e.message}")
    else:
        logger.warning(f"API {action} refusé: {e.kind} - {e.message}")
    return HTTPException(status_code=status_code, detail=e.message)


def _internal_error(e: Exception, action: str) -> HTTPException:
    logger.error(f"Erreur API {action}: {e}", exc_info=True)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Erreur interne ({action}).")


# ======================================================
# État
# ======================================================

@workflow_router.get("/state", response_model=WorkflowSnapshot, tags=["Workflow"])
async def read_state(store: WorkflowStoreDep):
    """Instantané complet du workflow (utilisateurs, catalogue, RFQ, devis, commandes, marges)."""
    return store.snapshot()


# ======================================================
# RFQ
# ======================================================

@workflow_router.post("/rfqs", response_model=RFQ, status_code=status.HTTP_201_CREATED, tags=["RFQ"])
async def create_rfq(store: WorkflowStoreDep, rfq_request: CreateRFQRequest):
    logger.info(f"API create_rfq pour client {rfq_request.client_id}")
    try:
        return await store.create_rfq(rfq_request.client_id, rfq_request.items)
    except WorkflowDomainException as e:
        raise _http_error(e, "create_rfq")
    except Exception as e:
        raise _internal_error(e, "create_rfq")


@workflow_router.put("/rfqs/{rfq_id}/items", response_model=RFQ, tags=["RFQ"])
async def update_rfq_items(
    store: WorkflowStoreDep,
    items_request: UpdateRFQItemsRequest,
    rfq_id: str = Path(..., title="ID de la RFQ"),
):
    try:
        return await store.update_rfq_items(rfq_id, items_request.items)
    except WorkflowDomainException as e:
        raise _http_error(e, "update_rfq_items")
    except Exception as e:
        raise _internal_error(e, "update_rfq_items")


# ======================================================
# Devis
# ======================================================

@workflow_router.post("/quotes", response_model=Quote, status_code=status.HTTP_201_CREATED, tags=["Quotes"])
async def submit_quote(store: WorkflowStoreDep, quote_request: SubmitQuoteRequest):
    logger.info(f"API submit_quote: fournisseur {quote_request.supplier_id} sur RFQ {quote_request.rfq_id}")
    try:
        return await store.submit_quote(
            quote_request.rfq_id, quote_request.supplier_id,
            quote_request.supplier_price, quote_request.lead_time,
        )
    except WorkflowDomainException as e:
        raise _http_error(e, "submit_quote")
    except Exception as e:
        raise _internal_error(e, "submit_quote")


@workflow_router.get("/quotes/{quote_id}/margin", response_model=MarginPreview, tags=["Quotes"])
async def preview_margin(store: WorkflowStoreDep, quote_id: str = Path(..., title="ID du devis")):
    """Marge et prix final qu'un envoi appliquerait maintenant (aucune écriture)."""
    try:
        return await store.preview_margin(quote_id)
    except WorkflowDomainException as e:
        raise _http_error(e, "preview_margin")
    except Exception as e:
        raise _internal_error(e, "preview_margin")


@workflow_router.put("/quotes/{quote_id}/margin-override", response_model=Quote, tags=["Quotes"])
async def set_margin_override(
    store: WorkflowStoreDep,
    override_request: MarginOverrideRequest,
    quote_id: str = Path(..., title="ID du devis"),
):
    try:
        return await store.set_margin_override(quote_id, override_request.percent)
    except WorkflowDomainException as e:
        raise _http_error(e, "set_margin_override")
    except Exception as e:
        raise _internal_error(e, "set_margin_override")


@workflow_router.delete("/quotes/{quote_id}/margin-override", response_model=Quote, tags=["Quotes"])
async def clear_margin_override(store: WorkflowStoreDep, quote_id: str = Path(..., title="ID du devis")):
    try:
        return await store.clear_margin_override(quote_id)
    except WorkflowDomainException as e:
        raise _http_error(e, "clear_margin_override")
    except Exception as e:
        raise _internal_error(e, "clear_margin_override")


@workflow_router.post("/quotes/{quote_id}/send", response_model=Quote, tags=["Quotes"])
async def send_quote(
    store: WorkflowStoreDep,
    quote_id: str = Path(..., title="ID du devis"),
    send_request: Optional[SendQuoteRequest] = Body(None),
):
    margin_percent = send_request.margin_percent if send_request else None
    try:
        return await store.send_quote(quote_id, margin_percent=margin_percent)
    except WorkflowDomainException as e:
        raise _http_error(e, "send_quote")
    except Exception as e:
        raise _internal_error(e, "send_quote")


@workflow_router.post("/quotes/{quote_id}/accept", response_model=AcceptanceResult, tags=["Quotes"])
async def accept_quote(store: WorkflowStoreDep, quote_id: str = Path(..., title="ID du devis")):
    logger.info(f"API accept_quote: devis {quote_id}")
    try:
        return await store.accept_quote(quote_id)
    except WorkflowDomainException as e:
        raise _http_error(e, "accept_quote")
    except Exception as e:
        raise _internal_error(e, "accept_quote")


@workflow_router.post("/quotes/{quote_id}/reject", response_model=Quote, tags=["Quotes"])
async def reject_quote(store: WorkflowStoreDep, quote_id: str = Path(..., title="ID du devis")):
    try:
        return await store.reject_quote(quote_id)
    except WorkflowDomainException as e:
        raise _http_error(e, "reject_quote")
    except Exception as e:
        raise _internal_error(e, "reject_quote")


# ======================================================
# Marges
# ======================================================

@workflow_router.get("/margins", response_model=List[MarginSetting], tags=["Margins"])
async def list_margins(store: WorkflowStoreDep):
    return store.margin_settings()


@workflow_router.put("/margins", response_model=MarginSetting, tags=["Margins"])
async def set_margin(store: WorkflowStoreDep, margin_request: MarginSettingRequest):
    try:
        return await store.set_margin_setting(margin_request.category, margin_request.margin_percent)
    except WorkflowDomainException as e:
        raise _http_error(e, "set_margin")
    except Exception as e:
        raise _internal_error(e, "set_margin")


# ======================================================
# Commandes
# ======================================================

@workflow_router.get("/orders/{order_id}", response_model=Order, tags=["Orders"])
async def read_order(store: WorkflowStoreDep, order_id: str = Path(..., title="ID de la commande")):
    try:
        return await store.get_order(order_id)
    except WorkflowDomainException as e:
        raise _http_error(e, "read_order")
    except Exception as e:
        raise _internal_error(e, "read_order")


# ======================================================
# Administration du catalogue et des fournisseurs
# ======================================================

@workflow_router.post("/products", response_model=Product, status_code=status.HTTP_201_CREATED, tags=["Catalog"])
async def submit_product(store: WorkflowStoreDep, product_request: SubmitProductRequest):
    logger.info(f"API submit_product: fournisseur {product_request.supplier_id}, catégorie {product_request.category}")
    try:
        return await store.submit_product(
            product_request.supplier_id,
            product_request.name,
            product_request.category,
            description=product_request.description,
            image=product_request.image,
            cost_price=product_request.cost_price,
            sku=product_request.sku,
        )
    except WorkflowDomainException as e:
        raise _http_error(e, "submit_product")
    except Exception as e:
        raise _internal_error(e, "submit_product")


@workflow_router.post("/products/{product_id}/approve", response_model=Product, tags=["Admin"])
async def approve_product(store: WorkflowStoreDep, product_id: str = Path(..., title="ID du produit")):
    try:
        return await store.approve_product(product_id)
    except WorkflowDomainException as e:
        raise _http_error(e, "approve_product")
    except Exception as e:
        raise _internal_error(e, "approve_product")


@workflow_router.post("/products/{product_id}/reject", response_model=Product, tags=["Admin"])
async def reject_product(store: WorkflowStoreDep, product_id: str = Path(..., title="ID du produit")):
    try:
        return await store.reject_product(product_id)
    except WorkflowDomainException as e:
        raise _http_error(e, "reject_product")
    except Exception as e:
        raise _internal_error(e, "reject_product")


@workflow_router.post("/suppliers/{user_id}/approve", response_model=User, tags=["Admin"])
async def approve_supplier(store: WorkflowStoreDep, user_id: str = Path(..., title="ID du fournisseur")):
    try:
        return await store.approve_supplier(user_id)
    except WorkflowDomainException as e:
        raise _http_error(e, "approve_supplier")
    except Exception as e:
        raise _internal_error(e, "approve_supplier")


@workflow_router.post("/suppliers/{user_id}/reject", response_model=User, tags=["Admin"])
async def reject_supplier(store: WorkflowStoreDep, user_id: str = Path(..., title="ID du fournisseur")):
    try:
        return await store.reject_supplier(user_id)
    except WorkflowDomainException as e:
        raise _http_error(e, "reject_supplier")
    except Exception as e:
        raise _internal_error(e, "reject_supplier")
