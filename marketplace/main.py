"""
Module principal de l'application FastAPI MWRD Marketplace.

Configure le logging, sélectionne la passerelle de persistance selon la
configuration, charge le WorkflowStore au démarrage et inclut le routeur
du workflow RFQ -> Devis -> Commande.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from marketplace.config import MODE_DATABASE, MODE_MOCK, settings
from marketplace.gateway.factory import build_gateway
from marketplace.gateway.storage import SnapshotStorage
from marketplace.workflow.router import workflow_router
from marketplace.workflow.store import WorkflowStore

# Configurer le logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    mode = settings.persistence_mode
    storage = SnapshotStorage(settings.SNAPSHOT_PATH) if mode == MODE_MOCK else None
    gateway = build_gateway(settings, storage)
    if mode == MODE_DATABASE:
        from marketplace.database import create_tables
        await create_tables(gateway.engine)

    store = WorkflowStore(gateway, storage=storage)
    await store.load()
    app.state.workflow_store = store
    logger.info(f"{settings.APP_NAME} démarrée en mode {mode}.")
    try:
        yield
    finally:
        await gateway.close()
        logger.info("Passerelle de persistance fermée.")


app = FastAPI(
    title=settings.APP_NAME,
    description="Workflow RFQ -> Devis -> Commande avec résolution des marges.",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

# ======================================================
# Inclure les routeurs
# ======================================================
app.include_router(workflow_router, prefix=settings.API_V1_PREFIX)


if __name__ == "__main__":
    import uvicorn
    logger.info("Démarrage du serveur Uvicorn pour le développement...")
    uvicorn.run(app, host="0.0.0.0", port=8000)
