from decimal import Decimal

import pytest

from marketplace.exceptions import GatewayException, InvalidTransitionException
from marketplace.gateway.memory import InMemoryGateway
from marketplace.quotes.models import QuoteStatus
from marketplace.rfqs.models import RFQItem, RFQStatus


@pytest.mark.asyncio
async def test_seed_data_is_loaded(mock_gateway: InMemoryGateway):
    rfqs = await mock_gateway.list_rfqs()
    assert {rfq.id for rfq in rfqs} == {"r1", "r2", "r3"}
    assert len(await mock_gateway.list_quotes(rfq_id="r2")) == 3
    assert (await mock_gateway.get_product("p7")).status.value == "PENDING"
    global_margin = [m for m in await mock_gateway.list_margin_settings() if m.category is None]
    assert global_margin[0].is_default


@pytest.mark.asyncio
async def test_list_filters_accept_plain_strings(mock_gateway: InMemoryGateway):
    sent = await mock_gateway.list_quotes(status="SENT_TO_CLIENT")
    assert {quote.id for quote in sent} == {"q1", "q3", "q4"}
    assert [user.id for user in await mock_gateway.list_users(role="ADMIN")] == ["u3"]


@pytest.mark.asyncio
async def test_create_and_update_rfq(mock_gateway: InMemoryGateway):
    rfq = await mock_gateway.create_rfq({
        "client_id": "u1", "items": [RFQItem(product_id="p1", quantity=2)], "status": RFQStatus.OPEN, "date": "2024-02-01",
    })
    assert rfq.id.startswith("RFQ-")

    updated = await mock_gateway.update_rfq(rfq.id, {"status": RFQStatus.QUOTED})
    assert updated.status == RFQStatus.QUOTED
    assert updated.items == rfq.items


@pytest.mark.asyncio
async def test_update_unknown_entity_raises_gateway_error(mock_gateway: InMemoryGateway):
    with pytest.raises(GatewayException):
        await mock_gateway.update_quote("missing", {"status": QuoteStatus.REJECTED})


@pytest.mark.asyncio
async def test_update_with_unknown_field_raises_gateway_error(mock_gateway: InMemoryGateway):
    with pytest.raises(GatewayException):
        await mock_gateway.update_quote("q1", {"price": Decimal("1")})


@pytest.mark.asyncio
async def test_only_one_order_per_quote(mock_gateway: InMemoryGateway):
    data = {"quote_id": "q1", "client_id": "u1", "supplier_id": "u2", "amount": Decimal("1320.00"), "date": "2024-02-01"}
    await mock_gateway.create_order(data)
    with pytest.raises(GatewayException):
        await mock_gateway.create_order(data)


@pytest.mark.asyncio
async def test_atomic_restores_state_on_error(mock_gateway: InMemoryGateway):
    with pytest.raises(RuntimeError):
        async with mock_gateway.atomic():
            await mock_gateway.update_quote("q1", {"status": QuoteStatus.ACCEPTED})
            await mock_gateway.update_rfq("r2", {"status": RFQStatus.CLOSED})
            raise RuntimeError("boom")

    assert (await mock_gateway.get_quote("q1")).status == QuoteStatus.SENT_TO_CLIENT
    assert (await mock_gateway.get_rfq("r2")).status == RFQStatus.QUOTED


@pytest.mark.asyncio
async def test_margin_setting_upsert(mock_gateway: InMemoryGateway):
    assert await mock_gateway.update_margin_setting("Furniture", Decimal("22"))
    assert await mock_gateway.update_margin_setting(None, Decimal("9"))
    settings_by_category = {m.category: m for m in await mock_gateway.list_margin_settings()}

    assert settings_by_category["Furniture"].margin_percent == Decimal("22")
    assert settings_by_category[None].margin_percent == Decimal("9")
    assert len([m for m in settings_by_category.values() if m.is_default]) == 1


@pytest.mark.asyncio
async def test_conditional_update_checks_current_status(mock_gateway: InMemoryGateway):
    accepted = await mock_gateway.update_quote(
        "q1", {"status": QuoteStatus.ACCEPTED}, expected_statuses={QuoteStatus.SENT_TO_CLIENT},
    )
    assert accepted.status == QuoteStatus.ACCEPTED

    with pytest.raises(InvalidTransitionException) as exc_info:
        await mock_gateway.update_quote(
            "q1", {"status": QuoteStatus.ACCEPTED}, expected_statuses={QuoteStatus.SENT_TO_CLIENT},
        )
    assert exc_info.value.current == "ACCEPTED"
    assert (await mock_gateway.get_quote("q1")).status == QuoteStatus.ACCEPTED
