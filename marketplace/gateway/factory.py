import logging
from typing import Optional

from marketplace.config import MODE_DATABASE, MODE_REMOTE, Settings, settings
from marketplace.gateway.base import AbstractPersistenceGateway
from marketplace.gateway.memory import InMemoryGateway
from marketplace.gateway.storage import SnapshotStorage

logger = logging.getLogger(__name__)


def build_gateway(app_settings: Settings = settings,
                  storage: Optional[SnapshotStorage] = None) -> AbstractPersistenceGateway:
    """Sélectionne la passerelle selon le mode de persistance configuré."""
    mode = app_settings.persistence_mode
    logger.info(f"[GatewayFactory] Mode de persistance: {mode}")

    if mode == MODE_REMOTE:
        from marketplace.gateway.rest import RestGateway
        return RestGateway(
            app_settings.SUPABASE_URL,
            app_settings.SUPABASE_ANON_KEY,
            timeout=app_settings.GATEWAY_TIMEOUT_SECONDS,
            page_size=app_settings.GATEWAY_PAGE_SIZE,
        )

    if mode == MODE_DATABASE:
        from marketplace.database import build_engine, build_session_factory
        from marketplace.gateway.sql import SqlGateway
        engine = build_engine(app_settings)
        return SqlGateway(build_session_factory(engine), page_size=app_settings.GATEWAY_PAGE_SIZE, engine=engine)

    snapshot = storage.load(mode) if storage is not None else None
    return InMemoryGateway(snapshot)
