"""
Cliente REST del backend remoto (httpx).

Requisitos cubiertos:
- bearer token por request (modo degradado si no hay token)
- timeout fijo por llamada (un timeout cuenta como error de transporte)
- clasificación de respuestas en errores tipados
- 409 en un create se lanza como ConflictDetected, que no es un fallo

No reintenta: la política de reintentos es del orquestador.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Optional, Union

import httpx
from loguru import logger

from pos_sync.shared.constants.sync_constants import SyncAction
from pos_sync.shared.exceptions.sync import (
    AuthenticationError,
    ConflictDetected,
    RemoteRequestError,
    TransportError,
    ValidationError,
)
from pos_sync.shared.utils.datetime_utils import EPOCH, isoformat_z, parse_iso

from .sync_config import SyncConfig
from .table_mappings import record_url, resource_for, table_for
from .types import (
    UNAUTHENTICATED,
    ChangeBatch,
    ProbeResult,
    RemoteChange,
    RemoteResult,
    Unauthenticated,
)


def _extract_payload(body: Any) -> dict[str, Any]:
    """El backend envuelve la mayoria de respuestas en {"data": ...}."""
    if isinstance(body, dict):
        inner = body.get("data")
        if isinstance(inner, dict):
            return inner
        return body
    return {}


def _safe_json(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None


def parse_change(item: Any) -> Optional[RemoteChange]:
    """
    Convierte un item del feed en RemoteChange.
    Retorna None si el item está mal formado.
    """
    if not isinstance(item, dict):
        return None

    table = item.get("table") or item.get("table_name")
    if not table and item.get("resource"):
        table = table_for(str(item["resource"]))
    action = str(item.get("action") or "").lower()
    data = item.get("data") if isinstance(item.get("data"), dict) else {}
    record_id = item.get("record_id", item.get("id", data.get("id")))

    if not table or record_id is None:
        return None
    try:
        action = SyncAction(action).value
    except ValueError:
        return None

    return RemoteChange(
        table=str(table),
        action=action,
        record_id=str(record_id),
        data=data,
        timestamp=parse_iso(item.get("timestamp") or item.get("updated_at")),
    )


class RemoteSyncClient:
    """
    Cliente HTTP del backend remoto.

    Importante:
    - Toma un SyncConfig al construirse; si la configuración cambia, el
      motor construye un cliente nuevo y cierra este.
    - `probe` nunca lanza: el monitor de salud solo necesita un booleano.
    """

    def __init__(
        self,
        config: SyncConfig,
        *,
        timeout_s: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        self._client = httpx.AsyncClient(
            base_url=config.remote_base_url,
            headers=headers,
            timeout=timeout_s,
            transport=transport,
        )

    @property
    def config(self) -> SyncConfig:
        return self._config

    @property
    def authenticated(self) -> bool:
        return self._config.authenticated

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transporte
    # ------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        """
        Ejecuta la request y convierte fallas de red en TransportError.

        Raises:
            TransportError: Timeout o error de red
        """
        try:
            return await self._client.request(method, path, params=params, json=json)
        except httpx.TimeoutException as e:
            raise TransportError(f"Timeout en {method} {path}: {e}")
        except httpx.TransportError as e:
            raise TransportError(f"Error de red en {method} {path}: {e}")

    def _raise_for_status(self, method: str, path: str, resp: httpx.Response) -> None:
        """
        Clasifica respuestas no-2xx.

        Estrategia:
        - 401/403: AuthenticationError (no se reintenta, modo degradado)
        - 429/5xx: TransportError (reintentable)
        - 400/422: ValidationError (payload mal formado)
        - otros 4xx: RemoteRequestError
        """
        status = resp.status_code
        if 200 <= status < 300:
            return

        detail = resp.text[:500]
        if status in (401, 403):
            raise AuthenticationError(remote_status=status)
        if status == 429 or 500 <= status < 600:
            raise TransportError(f"{method} {path} respondió {status}: {detail}", remote_status=status)
        if status in (400, 422):
            raise ValidationError(f"{method} {path} rechazado ({status}): {detail}")
        raise RemoteRequestError(f"{method} {path} respondió {status}: {detail}", remote_status=status)

    # ------------------------------------------------------------------
    # Operaciones
    # ------------------------------------------------------------------

    async def upload(self, record) -> Union[RemoteResult, Unauthenticated]:
        """
        Sube un registro de la cola.

        create -> POST <recurso>; update -> PUT <recurso>/<id>;
        delete -> DELETE <recurso>/<id>. El id remoto es local_data["id"]
        si existe, si no el id de la entidad en la cola.

        Raises:
            ConfigurationError: Tabla sin mapeo
            ConflictDetected: 409 en un create (el payload remoto viaja en remote_data)
            AuthenticationError, TransportError, ValidationError, RemoteRequestError
        """
        action = SyncAction(record.action)
        # Falla rápido aun en modo degradado: una tabla sin mapeo nunca va a subir
        resource_for(record.table_name)

        if not self.authenticated:
            return UNAUTHENTICATED

        payload = dict(record.local_data or {})
        remote_id = str(payload.get("id", record.record_id))

        if action == SyncAction.CREATE:
            method, path, body = "POST", record_url(record.table_name), payload
        elif action == SyncAction.UPDATE:
            method, path, body = "PUT", record_url(record.table_name, remote_id), payload
        else:
            method, path, body = "DELETE", record_url(record.table_name, remote_id), None

        resp = await self._send(method, path, json=body)

        if resp.status_code == 409 and action == SyncAction.CREATE:
            logger.info(f"Conflicto remoto (409) al crear {record.table_name}:{remote_id}")
            raise ConflictDetected(
                record.table_name, remote_id, _extract_payload(_safe_json(resp))
            )

        if resp.status_code == 404 and action == SyncAction.DELETE:
            # Ya no existe en remoto: el borrado es idempotente
            return RemoteResult(status_code=404, data={}, already_absent=True)

        self._raise_for_status(method, path, resp)
        return RemoteResult(status_code=resp.status_code, data=_extract_payload(_safe_json(resp)))

    async def download(self, since: Optional[datetime], limit: int) -> ChangeBatch:
        """
        Descarga cambios remotos desde `since` (GET /sync/changes).

        Acepta {"data": [...]} o una lista. Los items mal formados se omiten.
        """
        if not self.authenticated:
            return ChangeBatch(changes=[], authenticated=False)

        path = "/sync/changes"
        params = {"since": isoformat_z(since or EPOCH), "limit": limit}
        resp = await self._send("GET", path, params=params)
        self._raise_for_status("GET", path, resp)

        body = _safe_json(resp)
        items = body.get("data") if isinstance(body, dict) else body
        if not isinstance(items, list):
            logger.warning("Feed de cambios sin lista de items; se ignora")
            return ChangeBatch(changes=[])

        changes: list[RemoteChange] = []
        for item in items:
            change = parse_change(item)
            if change is None:
                logger.warning(f"Cambio remoto mal formado, omitido: {str(item)[:200]}")
                continue
            changes.append(change)
        return ChangeBatch(changes=changes)

    async def list_resource(self, table: str) -> Union[list[dict[str, Any]], Unauthenticated]:
        """GET del recurso completo (pass-through para otros modulos)."""
        path = resource_for(table)
        if not self.authenticated:
            return UNAUTHENTICATED
        resp = await self._send("GET", path)
        self._raise_for_status("GET", path, resp)
        body = _safe_json(resp)
        items = body.get("data") if isinstance(body, dict) else body
        return items if isinstance(items, list) else []

    async def probe(self, path: str) -> ProbeResult:
        """GET a un endpoint; nunca lanza."""
        if not self.authenticated:
            return ProbeResult(ok=False, error="unauthenticated")

        started = time.perf_counter()
        try:
            resp = await self._client.get(path)
        except httpx.HTTPError as e:
            elapsed = (time.perf_counter() - started) * 1000
            return ProbeResult(ok=False, response_time_ms=round(elapsed, 2), error=str(e) or type(e).__name__)

        elapsed = round((time.perf_counter() - started) * 1000, 2)
        if 200 <= resp.status_code < 300:
            return ProbeResult(ok=True, status=resp.status_code, response_time_ms=elapsed)
        return ProbeResult(
            ok=False,
            status=resp.status_code,
            response_time_ms=elapsed,
            error=f"HTTP {resp.status_code}",
        )

    async def check_health(self) -> ProbeResult:
        """GET /health del backend remoto."""
        return await self.probe("/health")
