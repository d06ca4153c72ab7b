import asyncio
from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from marketplace.database import build_session_factory, create_tables
from marketplace.exceptions import GatewayException, InvalidTransitionException
from marketplace.gateway.sql import SqlGateway
from marketplace.margins.models import InheritedMargin, ManualMargin
from marketplace.orders.materializer import OrderMaterializer
from marketplace.orders.models import AcceptanceResult
from marketplace.quotes.models import QuoteStatus
from marketplace.rfqs.models import RFQItem, RFQStatus

# URL de base pour la DB en mémoire
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    await create_tables(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def gateway(engine: AsyncEngine) -> SqlGateway:
    sql_gateway = SqlGateway(build_session_factory(engine))
    await sql_gateway.create_rfq({
        "id": "r1", "client_id": "u1", "status": RFQStatus.QUOTED, "date": "2024-01-01",
        "items": [RFQItem(product_id="p4", quantity=5, notes="urgent"), RFQItem(product_id="p3", quantity=1)],
    })
    await sql_gateway.create_quote({
        "id": "q1", "rfq_id": "r1", "supplier_id": "u2", "supplier_price": Decimal("1000"),
        "margin_override": ManualMargin(percent=Decimal("10")), "margin_percent": Decimal("10"),
        "final_price": Decimal("1100.00"), "status": QuoteStatus.SENT_TO_CLIENT,
    })
    return sql_gateway


@pytest.mark.asyncio
async def test_rfq_round_trip_keeps_item_order(gateway: SqlGateway):
    rfq = await gateway.get_rfq("r1")

    assert rfq.status == RFQStatus.QUOTED
    assert [item.product_id for item in rfq.items] == ["p4", "p3"]
    assert rfq.items[0].notes == "urgent"
    assert [r.id for r in await gateway.list_rfqs(status="QUOTED")] == ["r1"]
    assert await gateway.list_rfqs(status="OPEN") == []


@pytest.mark.asyncio
async def test_update_rfq_items_replaces_rows(gateway: SqlGateway):
    rfq = await gateway.update_rfq("r1", {"items": [RFQItem(product_id="p1", quantity=7)]})
    assert [(item.product_id, item.quantity) for item in rfq.items] == [("p1", 7)]


@pytest.mark.asyncio
async def test_quote_override_survives_storage(gateway: SqlGateway):
    quote = await gateway.get_quote("q1")
    assert quote.margin_override == ManualMargin(percent=Decimal("10"))
    assert quote.final_price == Decimal("1100.00")

    quote = await gateway.update_quote("q1", {"margin_override": InheritedMargin()})
    assert quote.margin_override == InheritedMargin()
    assert [q.id for q in await gateway.list_quotes(rfq_id="r1", status=QuoteStatus.SENT_TO_CLIENT)] == ["q1"]


@pytest.mark.asyncio
async def test_update_missing_quote_raises_gateway_error(gateway: SqlGateway):
    with pytest.raises(GatewayException):
        await gateway.update_quote("missing", {"status": QuoteStatus.REJECTED})


@pytest.mark.asyncio
async def test_unique_order_per_quote(gateway: SqlGateway):
    data = {"quote_id": "q1", "client_id": "u1", "supplier_id": "u2", "amount": Decimal("1100.00"), "date": "2024-01-02"}
    await gateway.create_order(data)
    with pytest.raises(GatewayException):
        await gateway.create_order(data)
    assert len(await gateway.list_orders(quote_id="q1")) == 1


@pytest.mark.asyncio
async def test_acceptance_is_rolled_back_when_order_creation_fails(gateway: SqlGateway):
    gateway.create_order = AsyncMock(side_effect=GatewayException("create_order", "timeout"))

    with pytest.raises(GatewayException):
        await OrderMaterializer(gateway).accept_quote("q1")

    assert (await gateway.get_quote("q1")).status == QuoteStatus.SENT_TO_CLIENT
    assert (await gateway.get_rfq("r1")).status == RFQStatus.QUOTED


@pytest.mark.asyncio
async def test_acceptance_commits_all_writes(gateway: SqlGateway):
    result = await OrderMaterializer(gateway).accept_quote("q1")

    assert result.order.amount == Decimal("1100.00")
    assert (await gateway.get_quote("q1")).status == QuoteStatus.ACCEPTED
    assert (await gateway.get_rfq("r1")).status == RFQStatus.CLOSED
    assert [order.id for order in await gateway.list_orders(quote_id="q1")] == [result.order.id]


@pytest.mark.asyncio
async def test_margin_settings_upsert(gateway: SqlGateway):
    await gateway.update_margin_setting(None, Decimal("15"))
    await gateway.update_margin_setting("Furniture", Decimal("20"))
    await gateway.update_margin_setting(None, Decimal("12"))

    settings_list = await gateway.list_margin_settings()
    by_category = {setting.category: setting for setting in settings_list}
    assert len(settings_list) == 2
    assert by_category[None].margin_percent == Decimal("12")
    assert by_category[None].is_default
    assert by_category["Furniture"].margin_percent == Decimal("20")


@pytest.mark.asyncio
async def test_list_reads_every_page(engine: AsyncEngine):
    sql_gateway = SqlGateway(build_session_factory(engine), page_size=2)
    for rfq_id in ("r1", "r2", "r3"):
        await sql_gateway.create_rfq({
            "id": rfq_id, "client_id": "u1", "status": RFQStatus.OPEN, "date": "2024-01-01",
            "items": [RFQItem(product_id="p4", quantity=1)],
        })

    rfqs = await sql_gateway.list_rfqs()

    assert [rfq.id for rfq in rfqs] == ["r1", "r2", "r3"]
    assert all(len(rfq.items) == 1 for rfq in rfqs)
    assert len(await sql_gateway.list_rfqs(status="OPEN")) == 3


@pytest.mark.asyncio
async def test_conditional_update_rejects_changed_status(gateway: SqlGateway):
    await gateway.update_rfq("r1", {"status": RFQStatus.CLOSED}, expected_statuses={RFQStatus.OPEN, RFQStatus.QUOTED})

    with pytest.raises(InvalidTransitionException) as exc_info:
        await gateway.update_rfq("r1", {"status": RFQStatus.CLOSED}, expected_statuses={RFQStatus.OPEN, RFQStatus.QUOTED})
    assert exc_info.value.current == "CLOSED"
    with pytest.raises(GatewayException):
        await gateway.update_quote("missing", {"status": QuoteStatus.ACCEPTED}, expected_statuses={QuoteStatus.SENT_TO_CLIENT})


# --- Accès concurrents: base SQLite sur fichier, une connexion par session ---

@pytest_asyncio.fixture(scope="function")
async def file_gateway(tmp_path) -> AsyncGenerator[SqlGateway, None]:
    file_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'marketplace.db'}", echo=False)
    await create_tables(file_engine)
    sql_gateway = SqlGateway(build_session_factory(file_engine), engine=file_engine)
    for rfq_id in ("r1", "r2"):
        await sql_gateway.create_rfq({
            "id": rfq_id, "client_id": "u1", "status": RFQStatus.QUOTED if rfq_id == "r1" else RFQStatus.OPEN,
            "date": "2024-01-01", "items": [RFQItem(product_id="p4", quantity=5)],
        })
    for quote_id, supplier_id, final_price in (("q1", "u2", "1100.00"), ("q2", "u4", "1080.00")):
        await sql_gateway.create_quote({
            "id": quote_id, "rfq_id": "r1", "supplier_id": supplier_id, "supplier_price": Decimal("1000"),
            "margin_override": InheritedMargin(), "margin_percent": Decimal("10"),
            "final_price": Decimal(final_price), "status": QuoteStatus.SENT_TO_CLIENT,
        })
    yield sql_gateway
    await sql_gateway.close()


@pytest.mark.asyncio
async def test_concurrent_write_is_not_absorbed_by_rolled_back_acceptance(file_gateway: SqlGateway):
    in_scope = asyncio.Event()

    async def slow_failure(data):
        in_scope.set()
        await asyncio.sleep(0.05)
        raise GatewayException("create_order", "timeout")

    file_gateway.create_order = slow_failure

    async def other_request():
        await in_scope.wait()
        return await file_gateway.update_rfq("r2", {"status": RFQStatus.QUOTED})

    acceptance, updated = await asyncio.gather(
        OrderMaterializer(file_gateway).accept_quote("q1"), other_request(), return_exceptions=True,
    )

    assert isinstance(acceptance, GatewayException)
    assert updated.status == RFQStatus.QUOTED
    assert (await file_gateway.get_rfq("r2")).status == RFQStatus.QUOTED
    assert (await file_gateway.get_quote("q1")).status == QuoteStatus.SENT_TO_CLIENT
    assert (await file_gateway.get_rfq("r1")).status == RFQStatus.QUOTED


@pytest.mark.asyncio
async def test_concurrent_sibling_acceptances_yield_one_order(file_gateway: SqlGateway):
    materializer = OrderMaterializer(file_gateway)

    results = await asyncio.gather(
        materializer.accept_quote("q1"), materializer.accept_quote("q2"), return_exceptions=True,
    )

    accepted = [result for result in results if isinstance(result, AcceptanceResult)]
    refused = [result for result in results if isinstance(result, InvalidTransitionException)]
    assert len(accepted) == 1
    assert len(refused) == 1
    assert (await file_gateway.get_rfq("r1")).status == RFQStatus.CLOSED
    orders = await file_gateway.list_orders()
    assert [order.quote_id for order in orders] == [accepted[0].quote.id]
    statuses = {quote.id: quote.status for quote in await file_gateway.list_quotes(rfq_id="r1")}
    assert sorted(statuses.values()) == [QuoteStatus.ACCEPTED, QuoteStatus.SENT_TO_CLIENT]
