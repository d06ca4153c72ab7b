import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
# Importer SQLModel pour utiliser ses métadonnées
from sqlmodel import SQLModel

from marketplace.config import Settings, settings
# Enregistre les tables dans SQLModel.metadata
from marketplace.gateway import tables  # noqa: F401

logger = logging.getLogger(__name__)


def build_engine(app_settings: Settings = settings) -> AsyncEngine:
    """Crée le moteur asynchrone à partir de DATABASE_URL."""
    if not app_settings.DATABASE_URL:
        raise RuntimeError("DATABASE_URL n'est pas configurée.")
    connect_args = {}
    if "asyncpg" in app_settings.DATABASE_URL:
        # Délai borné pour chaque requête envoyée à PostgreSQL
        connect_args["command_timeout"] = app_settings.GATEWAY_TIMEOUT_SECONDS
    engine = create_async_engine(
        app_settings.DATABASE_URL,
        echo=app_settings.DB_ECHO_LOG,  # Utiliser la variable de config pour echo
        future=True,  # Utilise l'API 2.0 de SQLAlchemy
        connect_args=connect_args,
    )
    logger.info("Moteur SQLAlchemy Async configuré.")
    return engine


def build_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,  # Empêche les objets d'expirer après commit
    )


async def create_tables(engine: Optional[AsyncEngine]) -> None:
    """Crée toutes les tables définies dans SQLModel.metadata."""
    if engine is None:
        return
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Tables SQL créées (si absentes).")
