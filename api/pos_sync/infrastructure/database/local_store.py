"""
Adaptador del almacén local embebido.

Expone la capacidad mínima que el resto del motor necesita
(`query`, `get`, `exec`) más helpers por tabla para aplicar cambios
remotos. Los nombres de tabla y columna se validan antes de construir SQL;
los valores siempre viajan como parámetros enlazados.
"""
from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Mapping, Optional

from loguru import logger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from pos_sync.shared.exceptions.sync import ValidationError


_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_identifier(name: str, kind: str = "identificador") -> str:
    """
    Valida un nombre de tabla o columna.

    Raises:
        ValidationError: Si el nombre no es un identificador SQL simple
    """
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise ValidationError(f"{kind} inválido: {name!r}", field=kind)
    return name


def _to_db_value(value: Any) -> Any:
    # Estructuras anidadas se guardan como JSON texto
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return value


class LocalStore:
    """
    Ejecuta consultas parametrizadas sobre el almacén local.

    Cada llamada usa su propia conexión y confirma al terminar: el
    almacén embebido serializa las escrituras.
    """

    def __init__(self, engine: AsyncEngine, id_column: str = "id"):
        self._engine = engine
        self._id_column = validate_identifier(id_column, "columna")

    async def query(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        """Ejecuta un SELECT y retorna todas las filas como dicts."""
        async with self._engine.connect() as conn:
            result = await conn.execute(text(sql), dict(params or {}))
            return [dict(row) for row in result.mappings().all()]

    async def get(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """Ejecuta un SELECT y retorna la primera fila o None."""
        async with self._engine.connect() as conn:
            result = await conn.execute(text(sql), dict(params or {}))
            row = result.mappings().first()
            return dict(row) if row else None

    async def exec(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> int:
        """Ejecuta una sentencia de escritura y retorna las filas afectadas."""
        async with self._engine.begin() as conn:
            result = await conn.execute(text(sql), dict(params or {}))
            return result.rowcount or 0

    # ------------------------------------------------------------------
    # Helpers por tabla
    # ------------------------------------------------------------------

    def _columns(self, data: Mapping[str, Any]) -> List[str]:
        if not data:
            raise ValidationError("El payload no puede estar vacío", field="data")
        return [validate_identifier(col, "columna") for col in data.keys()]

    async def fetch_record(self, table: str, record_id: Any) -> Optional[Dict[str, Any]]:
        """Obtiene una fila por su id."""
        table = validate_identifier(table, "tabla")
        return await self.get(
            f"SELECT * FROM {table} WHERE {self._id_column} = :record_id",
            {"record_id": record_id},
        )

    async def insert_record(self, table: str, data: Mapping[str, Any]) -> int:
        """Inserta una fila con las columnas del payload."""
        table = validate_identifier(table, "tabla")
        columns = self._columns(data)
        placeholders = ", ".join(f":{col}" for col in columns)
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        return await self.exec(sql, {col: _to_db_value(data[col]) for col in columns})

    async def update_record(self, table: str, record_id: Any, data: Mapping[str, Any]) -> int:
        """
        Actualiza las columnas del payload de una fila existente.
        El id del payload (si viene) no se reescribe.
        """
        table = validate_identifier(table, "tabla")
        changes = {k: v for k, v in data.items() if k != self._id_column}
        columns = self._columns(changes)
        assignments = ", ".join(f"{col} = :{col}" for col in columns)
        params = {col: _to_db_value(changes[col]) for col in columns}
        # Evita colisión con una columna llamada igual que el parámetro del id
        params["__record_id"] = record_id
        sql = f"UPDATE {table} SET {assignments} WHERE {self._id_column} = :__record_id"
        return await self.exec(sql, params)

    async def upsert_record(self, table: str, record_id: Any, data: Mapping[str, Any]) -> int:
        """Actualiza la fila si existe; si no, la inserta con su id."""
        changes = {k: v for k, v in data.items() if k != self._id_column}
        if changes:
            updated = await self.update_record(table, record_id, changes)
            if updated:
                return updated
        row = dict(data)
        row[self._id_column] = record_id
        logger.debug(f"LocalStore: insertando {table}:{record_id}")
        return await self.insert_record(table, row)

    async def delete_record(self, table: str, record_id: Any) -> int:
        """Elimina una fila por su id."""
        table = validate_identifier(table, "tabla")
        return await self.exec(
            f"DELETE FROM {table} WHERE {self._id_column} = :record_id",
            {"record_id": record_id},
        )
