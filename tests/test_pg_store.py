"""Tests for PgCredentialStore against a fake asyncpg pool."""
import pytest

from navigator_keyvault.vault import (
    CredentialNotFound,
    CredentialStatus,
    KeyDerivationMode,
    PgCredentialStore,
)
from navigator_keyvault.vault.store import _affected_rows

from .conftest import NOW


class FakeConnection:
    """Records queries and returns canned results."""

    def __init__(self):
        self.calls = []
        self.rows = []
        self.row = None
        self.status = "UPDATE 1"

    async def fetch(self, query, *args):
        self.calls.append(("fetch", query, args))
        return self.rows

    async def fetchrow(self, query, *args):
        self.calls.append(("fetchrow", query, args))
        return self.row

    async def execute(self, query, *args):
        self.calls.append(("execute", query, args))
        return self.status


class FakePool:
    def __init__(self, conn):
        self.conn = conn

    def acquire(self):
        return _Acquire(self.conn)


class _Acquire:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, *exc):
        return False


@pytest.fixture
def conn():
    return FakeConnection()


@pytest.fixture
def pg_store(conn):
    return PgCredentialStore(FakePool(conn))


def row_for(record):
    row = record.model_dump()
    row["key_derivation_mode"] = record.key_derivation_mode.value
    row["status"] = record.status.value
    row["tags"] = None
    return row


class TestAffectedRows:

    @pytest.mark.parametrize("status,expected", [
        ("UPDATE 1", 1),
        ("UPDATE 0", 0),
        ("DELETE 3", 3),
        ("", 0),
        (None, 0),
    ])
    def test_parse(self, status, expected):
        assert _affected_rows(status) == expected


class TestPgCredentialStore:
    """Tests for query dispatch and row mapping."""

    @pytest.mark.asyncio
    async def test_get_maps_row(self, pg_store, conn, make_record):
        """Test rows come back as validated records."""
        record = make_record(days_old=10)
        conn.row = row_for(record)
        fetched = await pg_store.get(record.id)
        assert fetched.id == record.id
        assert fetched.tags == []
        assert fetched.status is CredentialStatus.ACTIVE
        assert conn.calls[0][2] == (record.id,)

    @pytest.mark.asyncio
    async def test_get_missing(self, pg_store):
        assert await pg_store.get("missing") is None

    @pytest.mark.asyncio
    async def test_list_active_query(self, pg_store, conn, make_record):
        conn.rows = [row_for(make_record(days_old=d)) for d in (1, 2)]
        records = await pg_store.list_active()
        assert len(records) == 2
        assert "status = 'active'" in conn.calls[0][1]

    @pytest.mark.asyncio
    async def test_list_by_mode_paging(self, pg_store, conn):
        await pg_store.list_by_mode(KeyDerivationMode.SERVICE_SECRET, 50, 100)
        assert conn.calls[0][2] == ("service_secret", 50, 100)

    @pytest.mark.asyncio
    async def test_insert_passes_plain_values(self, pg_store, conn, make_record):
        record = make_record()
        await pg_store.insert(record)
        args = conn.calls[0][2]
        assert args[0] == record.id
        assert args[8] == "service_secret"
        assert args[10] == "active"
        assert len(args) == 15

    @pytest.mark.asyncio
    async def test_update_missing_row(self, pg_store, conn, make_record):
        conn.status = "UPDATE 0"
        with pytest.raises(CredentialNotFound):
            await pg_store.update(make_record())

    @pytest.mark.asyncio
    async def test_mark_expired_is_conditional(self, pg_store, conn):
        """Test only active rows are transitioned."""
        assert await pg_store.mark_expired("abc", NOW) is True
        query = conn.calls[0][1]
        assert "status = 'active'" in query
        assert conn.calls[0][2] == ("abc", NOW)

        conn.status = "UPDATE 0"
        assert await pg_store.mark_expired("abc", NOW) is False

    @pytest.mark.asyncio
    async def test_delete(self, pg_store, conn):
        conn.status = "DELETE 1"
        assert await pg_store.delete("abc") is True
        conn.status = "DELETE 0"
        assert await pg_store.delete("abc") is False
