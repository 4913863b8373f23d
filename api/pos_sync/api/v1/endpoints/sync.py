"""
Endpoints de sincronización.
Permiten al operador del POS ver el estado, disparar ciclos, administrar la
cola y resolver conflictos desde la UI.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status

from pos_sync.api.v1.dependencies.auth_deps import require_permission
from pos_sync.api.v1.dependencies.use_case_deps import get_sync_use_cases
from pos_sync.application.dto.sync_dto import (
    ConflictDTO,
    EnqueueRequestDTO,
    EnqueueResponseDTO,
    PurgeResponseDTO,
    RequeueRequestDTO,
    RequeueResponseDTO,
    ResolveConflictRequestDTO,
    ResolveConflictResponseDTO,
    SyncConfigDTO,
    SyncConfigUpdateDTO,
    SyncQueueListDTO,
    SyncRecordDTO,
    SyncRunResponseDTO,
    SyncStatusDTO,
)
from pos_sync.application.interfaces.auth_capability import (
    PERMISSION_SYNC_ADMIN,
    PERMISSION_SYNC_READ,
    PERMISSION_SYNC_WRITE,
    Principal,
)
from pos_sync.application.use_cases.sync_use_cases import SyncUseCases


router = APIRouter(prefix="/sync", tags=["Sync"])


@router.get(
    "/status",
    response_model=SyncStatusDTO,
    summary="Estado del motor de sincronización",
)
async def get_sync_status(
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
    _: Principal = Depends(require_permission(PERMISSION_SYNC_READ)),
) -> SyncStatusDTO:
    """Retorna el estado del último ciclo y los contadores de la cola."""
    return await use_cases.get_status()


@router.post(
    "/run",
    response_model=SyncRunResponseDTO,
    summary="Ejecutar un ciclo de sincronización ahora",
)
async def run_sync(
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
    _: Principal = Depends(require_permission(PERMISSION_SYNC_WRITE)),
) -> SyncRunResponseDTO:
    """
    Ejecuta un ciclo completo (subida, bajada y resolución).

    Si ya hay un ciclo corriendo retorna accepted=false sin esperar.
    """
    return await use_cases.run_sync()


@router.post(
    "/queue",
    response_model=EnqueueResponseDTO,
    status_code=status.HTTP_201_CREATED,
    summary="Encolar una mutación local",
)
async def enqueue(
    dto: EnqueueRequestDTO,
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
    _: Principal = Depends(require_permission(PERMISSION_SYNC_WRITE)),
) -> EnqueueResponseDTO:
    return await use_cases.enqueue(dto)


@router.get(
    "/queue",
    response_model=SyncQueueListDTO,
    summary="Listar la cola de salida",
)
async def list_queue(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    status_filter: Optional[str] = Query(None, alias="status"),
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
    _: Principal = Depends(require_permission(PERMISSION_SYNC_READ)),
) -> SyncQueueListDTO:
    return await use_cases.list_queue(limit=limit, offset=offset, status=status_filter)


@router.get(
    "/queue/{record_id}",
    response_model=SyncRecordDTO,
    summary="Detalle de un registro de la cola",
)
async def get_queue_record(
    record_id: str = Path(..., max_length=64),
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
    _: Principal = Depends(require_permission(PERMISSION_SYNC_READ)),
) -> SyncRecordDTO:
    return await use_cases.get_record(record_id)


@router.post(
    "/queue/retry",
    response_model=RequeueResponseDTO,
    summary="Reencolar registros failed/dead",
)
async def retry_failed(
    dto: RequeueRequestDTO,
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
    _: Principal = Depends(require_permission(PERMISSION_SYNC_WRITE)),
) -> RequeueResponseDTO:
    """Sin `ids` reencola todos los registros failed y dead."""
    return await use_cases.requeue(dto.ids)


@router.delete(
    "/queue",
    response_model=PurgeResponseDTO,
    summary="Purgar registros terminales antiguos",
)
async def purge_queue(
    older_than_days: int = Query(7, ge=0),
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
    _: Principal = Depends(require_permission(PERMISSION_SYNC_ADMIN)),
) -> PurgeResponseDTO:
    return await use_cases.purge(older_than_days)


@router.get(
    "/conflicts",
    response_model=List[ConflictDTO],
    summary="Listar conflictos",
)
async def list_conflicts(
    include_resolved: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
    _: Principal = Depends(require_permission(PERMISSION_SYNC_READ)),
) -> List[ConflictDTO]:
    return await use_cases.list_conflicts(limit=limit, include_resolved=include_resolved)


@router.post(
    "/conflicts/{conflict_id}/resolve",
    response_model=ResolveConflictResponseDTO,
    summary="Resolver un conflicto",
)
async def resolve_conflict(
    dto: ResolveConflictRequestDTO,
    conflict_id: int = Path(..., ge=1),
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
    principal: Principal = Depends(require_permission(PERMISSION_SYNC_WRITE)),
) -> ResolveConflictResponseDTO:
    """
    Aplica la resolución elegida por el operador.

    Un conflicto ya resuelto retorna 409.
    """
    return await use_cases.resolve_conflict(conflict_id, dto, resolved_by=principal.subject)


@router.get(
    "/config",
    response_model=SyncConfigDTO,
    summary="Configuración de sincronización",
)
async def get_config(
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
    _: Principal = Depends(require_permission(PERMISSION_SYNC_READ)),
) -> SyncConfigDTO:
    return use_cases.get_config()


@router.put(
    "/config",
    response_model=SyncConfigDTO,
    summary="Actualizar configuración de sincronización",
)
async def update_config(
    dto: SyncConfigUpdateDTO,
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
    _: Principal = Depends(require_permission(PERMISSION_SYNC_ADMIN)),
) -> SyncConfigDTO:
    """
    Actualiza solo los campos enviados.

    El cambio se aplica en caliente: el scheduler se reprograma y el ciclo
    en curso termina con la configuración anterior.
    """
    return await use_cases.update_config(dto)
