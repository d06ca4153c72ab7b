from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from marketplace.exceptions import (
    DanglingReferenceException, GatewayException, InvalidTransitionException, NotFoundException,
    WorkflowValidationException,
)
from marketplace.gateway.storage import SnapshotStorage
from marketplace.margins.models import InheritedMargin, ManualMargin
from marketplace.orders.models import OrderStatus
from marketplace.products.models import ProductStatus
from marketplace.quotes.models import Quote, QuoteStatus
from marketplace.rfqs.models import RFQStatus
from marketplace.users.models import KycStatus, UserStatus
from marketplace.workflow.schemas import RFQItemInput
from marketplace.workflow.store import WorkflowStore


async def open_rfq(store: WorkflowStore, product_id: str = "p4"):
    return await store.create_rfq("u1", [RFQItemInput(product_id=product_id, quantity=5)])


@pytest.mark.asyncio
async def test_end_to_end_quote_to_order(store: WorkflowStore):
    """q1 = 1100 (marge manuelle 10%), q2 = 1080 (catégorie Furniture 20%), accepter q1 clôt la RFQ."""
    rfq = await open_rfq(store)
    assert rfq.status == RFQStatus.OPEN

    q1 = await store.submit_quote(rfq.id, "u2", Decimal("1000"), "14 Days")
    q1 = await store.send_quote(q1.id, margin_percent=Decimal("10"))
    assert q1.final_price == Decimal("1100.00")
    assert q1.margin_override == ManualMargin(percent=Decimal("10"))

    q2 = await store.submit_quote(rfq.id, "u4", Decimal("900"), "10 Days")
    q2 = await store.send_quote(q2.id)
    assert q2.margin_percent == Decimal("20")
    assert q2.final_price == Decimal("1080.00")
    assert store.snapshot().rfqs[-1].status == RFQStatus.QUOTED

    result = await store.accept_quote(q1.id)

    snapshot = store.snapshot()
    closed = next(r for r in snapshot.rfqs if r.id == rfq.id)
    orders = [order for order in snapshot.orders if order.quote_id == q1.id]
    assert closed.status == RFQStatus.CLOSED
    assert len(orders) == 1
    assert orders[0].amount == Decimal("1100.00")
    assert orders[0].status == OrderStatus.PENDING_PAYMENT
    assert result.order.id == orders[0].id
    assert next(q for q in snapshot.quotes if q.id == q2.id).status == QuoteStatus.SENT_TO_CLIENT


@pytest.mark.asyncio
async def test_global_margin_for_category_without_default(store: WorkflowStore):
    rfq = await open_rfq(store, product_id="p5")  # Kitchenware
    quote = await store.submit_quote(rfq.id, "u2", Decimal("200"))

    preview = await store.preview_margin(quote.id)
    assert preview.source == "global"
    assert preview.final_price == Decimal("230.00")

    sent = await store.send_quote(quote.id)
    assert sent.margin_percent == Decimal("15")


@pytest.mark.asyncio
async def test_preview_does_not_write(store: WorkflowStore):
    rfq = await open_rfq(store)
    quote = await store.submit_quote(rfq.id, "u2", Decimal("1000"))

    preview = await store.preview_margin(quote.id)

    assert preview.category == "Furniture"
    assert preview.source == "category:Furniture"
    stored = await store.gateway.get_quote(quote.id)
    assert stored.final_price is None
    assert stored.status == QuoteStatus.PENDING_ADMIN


@pytest.mark.asyncio
async def test_clearing_override_reverts_to_category_margin(store: WorkflowStore):
    rfq = await open_rfq(store)
    quote = await store.submit_quote(rfq.id, "u2", Decimal("1000"))
    await store.set_margin_override(quote.id, Decimal("5"))
    assert (await store.preview_margin(quote.id)).source == "manual"

    cleared = await store.clear_margin_override(quote.id)
    assert cleared.margin_override == InheritedMargin()
    sent = await store.send_quote(quote.id)
    assert sent.final_price == Decimal("1200.00")


@pytest.mark.asyncio
async def test_updated_margin_setting_applies_to_next_send(store: WorkflowStore):
    rfq = await open_rfq(store)
    first = await store.send_quote((await store.submit_quote(rfq.id, "u2", Decimal("100"))).id)
    await store.set_margin_setting("Furniture", Decimal("30"))
    second = await store.send_quote((await store.submit_quote(rfq.id, "u4", Decimal("100"))).id)

    assert first.final_price == Decimal("120.00")
    assert second.final_price == Decimal("130.00")
    assert (await store.gateway.get_quote(first.id)).final_price == Decimal("120.00")


@pytest.mark.asyncio
async def test_set_global_margin(store: WorkflowStore):
    setting = await store.set_margin_setting(None, Decimal("9"))

    assert setting.is_default
    assert store.global_margin == Decimal("9")
    assert store.margin_settings()[0].margin_percent == Decimal("9")
    with pytest.raises(WorkflowValidationException):
        await store.set_margin_setting("Furniture", Decimal("-1"))


@pytest.mark.asyncio
async def test_create_rfq_validations(store: WorkflowStore):
    with pytest.raises(WorkflowValidationException):
        await store.create_rfq("u1", [])
    with pytest.raises(WorkflowValidationException):
        await store.create_rfq("u1", [RFQItemInput(product_id="p4", quantity=0)])
    with pytest.raises(NotFoundException):
        await store.create_rfq("ghost", [RFQItemInput(product_id="p4", quantity=1)])
    with pytest.raises(WorkflowValidationException):
        await store.create_rfq("u2", [RFQItemInput(product_id="p4", quantity=1)])  # Fournisseur, pas client
    with pytest.raises(NotFoundException):
        await store.create_rfq("u1", [RFQItemInput(product_id="missing", quantity=1)])
    with pytest.raises(WorkflowValidationException):
        await store.create_rfq("u1", [RFQItemInput(product_id="p7", quantity=1)])  # Produit non approuvé
    assert store.snapshot().rfqs == []


@pytest.mark.asyncio
async def test_rfq_items_frozen_once_quoted(store: WorkflowStore):
    rfq = await open_rfq(store)
    updated = await store.update_rfq_items(rfq.id, [RFQItemInput(product_id="p1", quantity=2, notes="bleu")])
    assert updated.items[0].product_id == "p1"

    await store.submit_quote(rfq.id, "u2", Decimal("100"))
    with pytest.raises(InvalidTransitionException):
        await store.update_rfq_items(rfq.id, [RFQItemInput(product_id="p4", quantity=1)])


@pytest.mark.asyncio
async def test_submit_quote_guards(store: WorkflowStore):
    rfq = await open_rfq(store)
    with pytest.raises(WorkflowValidationException):
        await store.submit_quote(rfq.id, "u2", Decimal("-5"))
    with pytest.raises(NotFoundException):
        await store.submit_quote("nope", "u2", Decimal("5"))
    with pytest.raises(WorkflowValidationException):
        await store.submit_quote(rfq.id, "u1", Decimal("5"))  # Client, pas fournisseur

    quote = await store.send_quote((await store.submit_quote(rfq.id, "u2", Decimal("100"))).id)
    await store.accept_quote(quote.id)
    with pytest.raises(InvalidTransitionException):
        await store.submit_quote(rfq.id, "u4", Decimal("90"))


@pytest.mark.asyncio
async def test_send_quote_guards(store: WorkflowStore):
    rfq = await open_rfq(store)
    free = await store.submit_quote(rfq.id, "u2", Decimal("0"))
    with pytest.raises(InvalidTransitionException):
        await store.send_quote(free.id)
    assert (await store.gateway.get_quote(free.id)).status == QuoteStatus.PENDING_ADMIN
    assert (await store.gateway.get_rfq(rfq.id)).status == RFQStatus.OPEN

    quote = await store.send_quote((await store.submit_quote(rfq.id, "u4", Decimal("50"))).id)
    with pytest.raises(InvalidTransitionException):
        await store.send_quote(quote.id)
    with pytest.raises(InvalidTransitionException):
        await store.set_margin_override(quote.id, Decimal("3"))


@pytest.mark.asyncio
async def test_send_quote_with_dangling_rfq(store: WorkflowStore):
    orphan = await store.gateway.create_quote(
        Quote(id="q-orphan", rfq_id="r-missing", supplier_id="u2", supplier_price=Decimal("10")).model_dump()
    )
    with pytest.raises(DanglingReferenceException):
        await store.send_quote(orphan.id)


@pytest.mark.asyncio
async def test_reject_quote_is_terminal(store: WorkflowStore):
    rfq = await open_rfq(store)
    quote = await store.send_quote((await store.submit_quote(rfq.id, "u2", Decimal("100"))).id)

    rejected = await store.reject_quote(quote.id)
    assert rejected.status == QuoteStatus.REJECTED
    with pytest.raises(InvalidTransitionException):
        await store.accept_quote(quote.id)
    with pytest.raises(InvalidTransitionException):
        await store.reject_quote(quote.id)


@pytest.mark.asyncio
async def test_catalog_and_supplier_review(mock_store: WorkflowStore):
    product = await mock_store.approve_product("p7")
    assert product.status == ProductStatus.APPROVED
    assert (await mock_store.reject_product("p6")).status == ProductStatus.REJECTED

    supplier = await mock_store.approve_supplier("sup_global_imports")
    assert supplier.status == UserStatus.APPROVED
    assert supplier.kyc_status == KycStatus.VERIFIED
    assert supplier.verified

    rejected = await mock_store.reject_supplier("u4")
    assert rejected.status == UserStatus.REJECTED
    assert rejected.kyc_status == KycStatus.REJECTED

    with pytest.raises(WorkflowValidationException):
        await mock_store.approve_supplier("u1")
    with pytest.raises(NotFoundException):
        await mock_store.approve_product("p404")


@pytest.mark.asyncio
async def test_mock_mode_persists_snapshot(tmp_path, mock_gateway):
    storage = SnapshotStorage(tmp_path / "storage.json")
    store = WorkflowStore(mock_gateway, storage=storage)
    await store.load()
    rfq = await open_rfq(store)

    restored = storage.load(mock_gateway.mode)
    assert restored is not None
    assert rfq.id in {r.id for r in restored.rfqs}


@pytest.mark.asyncio
async def test_supplier_submits_pending_product(store: WorkflowStore):
    product = await store.submit_product("u4", " Ergo Desk ", "Furniture", cost_price=Decimal("250.00"), sku="ED-1")

    assert product.status == ProductStatus.PENDING
    assert product.supplier_id == "u4"
    assert product.name == "Ergo Desk"
    assert (await store.gateway.get_product(product.id)).sku == "ED-1"
    assert product.id in {p.id for p in store.snapshot().products}

    # Non commandable avant la revue admin
    with pytest.raises(WorkflowValidationException):
        await store.create_rfq("u1", [RFQItemInput(product_id=product.id, quantity=1)])
    await store.approve_product(product.id)
    assert (await store.create_rfq("u1", [RFQItemInput(product_id=product.id, quantity=1)])).status == RFQStatus.OPEN


@pytest.mark.asyncio
async def test_submit_product_guards(store: WorkflowStore):
    with pytest.raises(WorkflowValidationException):
        await store.submit_product("u1", "Chaise", "Furniture")  # Client, pas fournisseur
    with pytest.raises(NotFoundException):
        await store.submit_product("ghost", "Chaise", "Furniture")
    with pytest.raises(WorkflowValidationException) as exc_info:
        await store.submit_product("u2", " ", "", cost_price=Decimal("-1"))
    assert len(exc_info.value.errors) == 3


@pytest.mark.asyncio
async def test_get_order_reads_store_of_record(store: WorkflowStore):
    rfq = await open_rfq(store)
    quote = await store.send_quote((await store.submit_quote(rfq.id, "u2", Decimal("100"))).id)
    result = await store.accept_quote(quote.id)

    order = await store.get_order(result.order.id)
    assert order == result.order
    with pytest.raises(NotFoundException):
        await store.get_order("ORD-MISSING")


@pytest.mark.asyncio
async def test_failed_acceptance_resyncs_cached_copies(store: WorkflowStore):
    rfq = await open_rfq(store)
    quote = await store.send_quote((await store.submit_quote(rfq.id, "u2", Decimal("100"))).id)

    # Le stockage a accepté le devis et clôturé la RFQ, puis la commande a échoué
    await store.gateway.update_quote(quote.id, {"status": QuoteStatus.ACCEPTED})
    await store.gateway.update_rfq(rfq.id, {"status": RFQStatus.CLOSED})
    store.gateway.create_order = AsyncMock(side_effect=GatewayException("create_order", "timeout"))

    with pytest.raises(GatewayException):
        await store.accept_quote(quote.id)

    snapshot = store.snapshot()
    assert next(q for q in snapshot.quotes if q.id == quote.id).status == QuoteStatus.ACCEPTED
    assert next(r for r in snapshot.rfqs if r.id == rfq.id).status == RFQStatus.CLOSED
