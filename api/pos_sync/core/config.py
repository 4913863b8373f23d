"""
Configuración central de la aplicación.
Gestiona variables de entorno y valores por defecto del motor de sincronización.

Los valores REMOTE_* / SYNC_* son solo el arranque: una vez que el operador
guarda la configuración, la tabla sync_config manda sobre ellos.
"""
import json
from typing import List
from pydantic_settings import BaseSettings
from pydantic import Field, computed_field


class Settings(BaseSettings):
    """
    Clase de configuración de la aplicación.
    Lee variables de entorno y proporciona valores por defecto.

    Configuración de desarrollo vs producción:
    - ENVIRONMENT: 'development' o 'production'
    - DATABASE_URL apunta al almacén local embebido (SQLite vía aiosqlite)
    - ADMIN_TOKEN vacío deja la API de administración abierta (solo desarrollo)
    """

    # Configuración de la aplicación
    APP_NAME: str = Field(default="POS Sync Engine")
    APP_VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="production")

    # Configuración del servidor
    HOST: str = Field(default="127.0.0.1")
    PORT: int = Field(default=8765)

    # Almacén local embebido
    DATABASE_URL: str = Field(default="sqlite+aiosqlite:///./data/pos_local.db")

    # Backend remoto (valores de arranque para SyncConfig)
    REMOTE_BASE_URL: str = Field(default="https://clutch-main-nk7x.onrender.com/api")
    REMOTE_API_KEY: str = Field(default="")
    SYNC_INTERVAL_MINUTES: int = Field(default=30)
    AUTO_SYNC_ENABLED: bool = Field(default=True)
    CONFLICT_RESOLUTION_POLICY: str = Field(default="local")
    SYNC_BATCH_SIZE: int = Field(default=100)
    SYNC_RETRY_ATTEMPTS: int = Field(default=3)
    SYNC_RETRY_DELAY_MS: int = Field(default=5000)

    # Transporte HTTP
    HTTP_TIMEOUT_SECONDS: float = Field(default=20.0)

    # Canal realtime
    SHOP_ID: str = Field(default="")
    REALTIME_ENABLED: bool = Field(default=True)
    REALTIME_WS_URL: str = Field(default="")
    REALTIME_HEARTBEAT_INTERVAL_SECONDS: float = Field(default=30.0)
    REALTIME_HEARTBEAT_TIMEOUT_SECONDS: float = Field(default=10.0)
    REALTIME_RECONNECT_BASE_DELAY_SECONDS: float = Field(default=1.0)
    REALTIME_RECONNECT_MAX_DELAY_SECONDS: float = Field(default=30.0)
    REALTIME_MAX_RECONNECT_ATTEMPTS: int = Field(default=5)

    # Monitor de salud de la conexión
    HEALTH_CHECK_INTERVAL_SECONDS: float = Field(default=30.0)
    HEALTH_RETRY_DELAY_SECONDS: float = Field(default=5.0)
    HEALTH_MAX_RETRY_ATTEMPTS: int = Field(default=5)

    # Seguridad de la API local de administración
    ADMIN_TOKEN: str = Field(default="")

    # CORS (acepta lista JSON o "*" para todos los origenes)
    CORS_ORIGINS: str = Field(default="*")

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE: str = Field(default="logs/app.log")

    @computed_field
    @property
    def effective_ws_url(self) -> str:
        """
        Retorna la URL base del canal realtime.
        Si REALTIME_WS_URL está definida, la usa directamente.
        Si no, la deriva de REMOTE_BASE_URL cambiando el esquema a ws/wss.
        """
        if self.REALTIME_WS_URL:
            return self.REALTIME_WS_URL.rstrip("/")
        base = self.REMOTE_BASE_URL.rstrip("/")
        base = base.replace("https://", "wss://", 1).replace("http://", "ws://", 1)
        return f"{base}/ws"

    @computed_field
    @property
    def is_development(self) -> bool:
        """Indica si el entorno es de desarrollo."""
        return self.ENVIRONMENT.lower() == "development"

    class Config:
        """Configuración de Pydantic."""
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignorar campos extra del .env


def get_cors_origins(cors_string: str) -> List[str]:
    """
    Parsea la configuración de CORS.
    Acepta "*" para todos los origenes o una lista JSON.
    """
    if cors_string == "*":
        return ["*"]
    try:
        return json.loads(cors_string)
    except json.JSONDecodeError:
        # Si no es JSON válido, retornar como lista simple
        return [origin.strip() for origin in cors_string.split(",")]


# Instancia global de configuración
settings = Settings()
