"""
SyncAuditLogger - Log de auditoria de la sincronización.

Escribe un archivo diario en logs/sync_logs/ con:
- una línea por resumen de ciclo
- una línea por transición de registro (subida, descarga, conflicto)
"""
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger


class SyncAuditLogger:
    """
    Gestor del log de auditoria de sincronización.

    Uso:
        # Al inicio de la app
        SyncAuditLogger.initialize()

        # En el orquestador
        SyncAuditLogger.log_transition("products", "5", "update", "pending", "synced")
        SyncAuditLogger.log_cycle({"synced": 3, "failed": 0})
    """

    BASE_LOG_DIR = Path("logs")
    SYNC_LOG_DIR = BASE_LOG_DIR / "sync_logs"

    FILE_TIMESTAMP_FORMAT = "%Y-%m-%d"

    _sink_id: Optional[int] = None
    _initialized: bool = False

    @classmethod
    def initialize(cls, log_dir: Optional[Path] = None) -> None:
        """
        Crea la carpeta y agrega el sink filtrado por contexto "sync".
        Debe llamarse al inicio de la aplicación.
        """
        if cls._initialized:
            return

        directory = Path(log_dir) if log_dir else cls.SYNC_LOG_DIR
        directory.mkdir(parents=True, exist_ok=True)

        today = datetime.now().strftime(cls.FILE_TIMESTAMP_FORMAT)
        log_file = directory / f"sync_{today}.log"

        cls._sink_id = logger.add(
            str(log_file),
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {message}",
            filter=lambda record: record["extra"].get("context") == "sync",
            rotation="1 day",
            retention="30 days",
            level="DEBUG"
        )

        cls._initialized = True
        logger.info("SyncAuditLogger inicializado")

    @classmethod
    def shutdown(cls) -> None:
        """Quita el sink (usado al cerrar la app y en tests)."""
        if cls._sink_id is not None:
            logger.remove(cls._sink_id)
        cls._sink_id = None
        cls._initialized = False

    @classmethod
    def log_transition(
        cls,
        table: str,
        record_id: str,
        action: str,
        from_status: Optional[str],
        to_status: str,
        error: Optional[str] = None,
    ) -> None:
        """Registra una transición de estado de un registro."""
        sync_logger = logger.bind(context="sync")
        message = f"{table}:{record_id} {action} {from_status or '-'} -> {to_status}"
        if error:
            sync_logger.warning(f"{message} | {error}")
        else:
            sync_logger.info(message)

    @classmethod
    def log_cycle(cls, summary: Dict[str, Any]) -> None:
        """Registra el resumen de un ciclo."""
        sync_logger = logger.bind(context="sync")
        level = "warning" if summary.get("errors") else "info"
        getattr(sync_logger, level)(f"CICLO {json.dumps(summary, default=str)}")


# Alias para uso más simple
sync_audit = SyncAuditLogger
