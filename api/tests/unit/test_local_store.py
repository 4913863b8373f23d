"""
Tests del adaptador del almacén local.
"""
import pytest

from pos_sync.infrastructure.database.local_store import LocalStore, validate_identifier
from pos_sync.infrastructure.database.session import SQLITE_BUSY_TIMEOUT_MS, create_engine_for
from pos_sync.shared.exceptions.sync import ValidationError


class TestValidateIdentifier:
    @pytest.mark.parametrize("name", ["products", "_tmp", "Sale_Items2"])
    def test_accepts_simple_identifiers(self, name):
        assert validate_identifier(name) == name

    @pytest.mark.parametrize(
        "name",
        ["products; DROP TABLE sync_queue", "1abc", "name with space", "a-b", "", None],
    )
    def test_rejects_anything_else(self, name):
        with pytest.raises(ValidationError):
            validate_identifier(name)


class TestLocalStore:
    """Tests de los helpers por tabla."""

    @pytest.mark.asyncio
    async def test_upsert_inserts_then_updates(self, local_store):
        await local_store.upsert_record("products", "5", {"name": "Filtro", "price": 10.0})
        await local_store.upsert_record("products", "5", {"price": 12.5})

        row = await local_store.fetch_record("products", "5")
        assert row == {"id": "5", "name": "Filtro", "price": 12.5}

    @pytest.mark.asyncio
    async def test_update_ignores_payload_id(self, local_store):
        await local_store.insert_record("products", {"id": "1", "name": "A", "price": 1})

        updated = await local_store.update_record("products", "1", {"id": "999", "name": "B"})

        assert updated == 1
        assert await local_store.fetch_record("products", "999") is None
        assert (await local_store.fetch_record("products", "1"))["name"] == "B"

    @pytest.mark.asyncio
    async def test_delete_record(self, local_store):
        await local_store.insert_record("products", {"id": "1", "name": "A", "price": 1})

        assert await local_store.delete_record("products", "1") == 1
        assert await local_store.fetch_record("products", "1") is None

    @pytest.mark.asyncio
    async def test_values_are_bound_parameters(self, local_store):
        """Un valor con SQL no se interpreta."""
        evil = "x'); DROP TABLE products; --"
        await local_store.insert_record("products", {"id": "1", "name": evil, "price": 1})

        rows = await local_store.query("SELECT name FROM products WHERE id = :id", {"id": "1"})
        assert rows == [{"name": evil}]

    @pytest.mark.asyncio
    async def test_rejects_unsafe_table_and_column(self, local_store):
        with pytest.raises(ValidationError):
            await local_store.upsert_record("products;--", "1", {"name": "x"})
        with pytest.raises(ValidationError):
            await local_store.insert_record("products", {"name = 1 --": "x"})

    @pytest.mark.asyncio
    async def test_rejects_empty_payload(self, local_store):
        with pytest.raises(ValidationError):
            await local_store.insert_record("products", {})

    @pytest.mark.asyncio
    async def test_custom_id_column_is_validated(self, db_engine):
        with pytest.raises(ValidationError):
            LocalStore(db_engine, id_column="id; --")


class TestEnginePragmas:
    """Tests de la configuración de conexiones SQLite."""

    @pytest.mark.asyncio
    async def test_file_engine_sets_wal_and_busy_timeout(self, tmp_path):
        bind = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'pos.db'}")
        store = LocalStore(bind)
        try:
            assert (await store.get("PRAGMA journal_mode"))["journal_mode"] == "wal"
            assert (await store.get("PRAGMA busy_timeout"))["timeout"] == SQLITE_BUSY_TIMEOUT_MS
            assert (await store.get("PRAGMA foreign_keys"))["foreign_keys"] == 1
        finally:
            await bind.dispose()
