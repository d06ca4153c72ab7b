import json
import logging
from decimal import Decimal
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Charger les variables d'environnement AVANT de définir la classe Settings
load_dotenv()

MODE_MOCK = "MOCK"
MODE_DATABASE = "DATABASE"
MODE_REMOTE = "REMOTE"


class Settings(BaseSettings):
    # --- Application ---
    APP_NAME: str = "MWRD Marketplace"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # --- Backend distant (Supabase / PostgREST) ---
    SUPABASE_URL: Optional[str] = None
    SUPABASE_ANON_KEY: Optional[str] = None

    # --- Base de Données ---
    DATABASE_URL: Optional[str] = None
    DB_ECHO_LOG: bool = False

    # --- Passerelle de persistance ---
    GATEWAY_TIMEOUT_SECONDS: float = 30.0
    GATEWAY_PAGE_SIZE: int = 1000  # Lignes par page pour les lectures paginées

    # --- Mode local (données mock) ---
    SNAPSHOT_PATH: str = ".mwrd-storage.json"

    # --- Marges par défaut ---
    DEFAULT_GLOBAL_MARGIN: Decimal = Decimal("15")
    DEFAULT_CATEGORY_MARGINS: Dict[str, Decimal] = {
        "Electronics": Decimal("12"),
        "Furniture": Decimal("20"),
        "Industrial": Decimal("18"),
        "Footwear": Decimal("15"),
        "Accessories": Decimal("25"),
    }

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignorer les variables d'env non définies dans le modèle
    )

    @field_validator("DEFAULT_CATEGORY_MARGINS", mode="before")
    @classmethod
    def _parse_category_margins(cls, value):
        if isinstance(value, str):
            return json.loads(value)
        return value

    @property
    def persistence_mode(self) -> str:
        """Mode de persistance déduit de la configuration (REMOTE > DATABASE > MOCK)."""
        if self.SUPABASE_URL and self.SUPABASE_ANON_KEY:
            return MODE_REMOTE
        if self.DATABASE_URL:
            return MODE_DATABASE
        return MODE_MOCK


# Instancier la classe de configuration
settings = Settings()

logger.info(f"Configuration chargée: mode={settings.persistence_mode}, marge globale par défaut={settings.DEFAULT_GLOBAL_MARGIN}%")
