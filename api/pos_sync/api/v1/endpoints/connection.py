"""
Endpoints de conectividad con el backend remoto.
Exponen la señal del monitor de salud y el estado del canal realtime.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends

from pos_sync.api.v1.dependencies.auth_deps import require_permission
from pos_sync.api.v1.dependencies.engine_deps import get_sync_engine
from pos_sync.application.interfaces.auth_capability import (
    PERMISSION_SYNC_READ,
    PERMISSION_SYNC_WRITE,
    Principal,
)
from pos_sync.application.services.sync_engine import SyncEngine


router = APIRouter(prefix="/connection", tags=["Connection"])


def _connection_payload(engine: SyncEngine) -> Dict[str, Any]:
    return {
        "status": engine.monitor.status.to_dict(),
        "stats": engine.monitor.get_stats(),
        "realtime": engine.channel.get_status() if engine.channel is not None else None,
    }


@router.get("/status", summary="Estado de la conexión con el backend")
async def get_connection_status(
    engine: SyncEngine = Depends(get_sync_engine),
    _: Principal = Depends(require_permission(PERMISSION_SYNC_READ)),
) -> Dict[str, Any]:
    """Retorna el resultado de la última ronda de sondas (sin sondear)."""
    return _connection_payload(engine)


@router.post("/refresh", summary="Sondear el backend ahora")
async def refresh_connection(
    engine: SyncEngine = Depends(get_sync_engine),
    _: Principal = Depends(require_permission(PERMISSION_SYNC_READ)),
) -> Dict[str, Any]:
    await engine.monitor.check_all()
    return _connection_payload(engine)


@router.post("/reconnect", summary="Forzar reconexión")
async def force_reconnect(
    engine: SyncEngine = Depends(get_sync_engine),
    _: Principal = Depends(require_permission(PERMISSION_SYNC_WRITE)),
) -> Dict[str, Any]:
    """
    Reanuda el monitor si estaba en pausa, reinicia el canal realtime y
    sondea de inmediato.
    """
    await engine.monitor.force_reconnect()
    return _connection_payload(engine)
