# Standard Library
from decimal import Decimal
from typing import AsyncGenerator

# Third-Party Libraries
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# First-Party Libraries
from marketplace.gateway.memory import InMemoryGateway
from marketplace.main import app
from marketplace.products.models import Product, ProductStatus
from marketplace.users.models import User, UserRole, UserStatus
from marketplace.workflow.dependencies import get_workflow_store
from marketplace.workflow.models import WorkflowSnapshot
from marketplace.workflow.store import WorkflowStore

CATEGORY_MARGINS = {
    "Electronics": Decimal("12"),
    "Furniture": Decimal("20"),
    "Industrial": Decimal("18"),
    "Footwear": Decimal("15"),
    "Accessories": Decimal("25"),
}
GLOBAL_MARGIN = Decimal("15")


def make_catalog_snapshot() -> WorkflowSnapshot:
    """Catalogue minimal sans RFQ ni devis."""
    return WorkflowSnapshot(
        users=[
            User(id="u1", role=UserRole.CLIENT, name="John Client", status=UserStatus.ACTIVE, verified=True),
            User(id="u2", role=UserRole.SUPPLIER, name="Sarah Supplier", status=UserStatus.APPROVED, verified=True),
            User(id="u4", role=UserRole.SUPPLIER, name="Indie Parts Co", status=UserStatus.APPROVED, verified=True),
            User(id="u3", role=UserRole.ADMIN, name="Admin Alice", verified=True),
        ],
        products=[
            Product(id="p1", supplier_id="u2", name="Precision Runner X1", category="Footwear", status=ProductStatus.APPROVED),
            Product(id="p4", supplier_id="u2", name="ErgoChair 2000", category="Furniture", status=ProductStatus.APPROVED),
            Product(id="p5", supplier_id="u2", name="CulinaryMaster Knives", category="Kitchenware", status=ProductStatus.APPROVED),
            Product(id="p7", supplier_id="u4", name="Smart Monitor 27", category="Electronics", status=ProductStatus.PENDING),
        ],
    )


# --- Fixtures Passerelle et Store ---

@pytest.fixture
def mock_gateway() -> InMemoryGateway:
    """Passerelle initialisée avec le jeu de données de démonstration."""
    return InMemoryGateway()


@pytest.fixture
def catalog_gateway() -> InMemoryGateway:
    return InMemoryGateway(make_catalog_snapshot())


@pytest_asyncio.fixture(scope="function")
async def store(catalog_gateway: InMemoryGateway) -> WorkflowStore:
    workflow_store = WorkflowStore(
        catalog_gateway,
        default_global_margin=GLOBAL_MARGIN,
        default_category_margins=CATEGORY_MARGINS,
    )
    await workflow_store.load()
    return workflow_store


@pytest_asyncio.fixture(scope="function")
async def mock_store(mock_gateway: InMemoryGateway) -> WorkflowStore:
    workflow_store = WorkflowStore(
        mock_gateway,
        default_global_margin=GLOBAL_MARGIN,
        default_category_margins=CATEGORY_MARGINS,
    )
    await workflow_store.load()
    return workflow_store


# --- Fixture Client HTTP ---

@pytest_asyncio.fixture(scope="function")
async def test_client(store: WorkflowStore) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient httpx branché sur l'application, avec le store de test."""
    app.dependency_overrides[get_workflow_store] = lambda: store
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    del app.dependency_overrides[get_workflow_store]
