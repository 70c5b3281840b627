"""데이터 소스 커넥션 풀 테스트."""
import pytest

from core.exceptions import DataSourceConnectionError, QueryExecutionError
from integrations.datasource import ConnectionManager, DatabaseConnection, create_connection
from integrations.datasource.connection import to_async_url
from integrations.datasource.dialects import probe_query, table_count_query
from models import DataSourceType


class FakeConnection(DatabaseConnection):
    """실제 백엔드 없이 close 호출만 기록하는 커넥션."""

    def __init__(self, backend_type, connection_string, retry_attempts=1):
        super().__init__(backend_type, connection_string, retry_attempts)
        self.close_calls = 0

    async def _execute(self, sql):
        return [{"sql": sql}]

    async def _close(self):
        self.close_calls += 1


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_manager(clock):
    return ConnectionManager(
        idle_ttl_seconds=60,
        connection_factory=lambda backend_type, cs: FakeConnection(backend_type, cs),
        clock=clock,
    )


class TestConnectionPool:
    """풀 재사용 / 교체 / 유휴 정리."""

    @pytest.mark.asyncio
    async def test_same_key_reuses_connection(self, fake_manager):
        first = await fake_manager.get_connection("ds-1", DataSourceType.POSTGRESQL, "postgresql://a@h/db")
        second = await fake_manager.get_connection("ds-1", "POSTGRESQL", "postgresql://a@h/db")
        assert first is second
        assert fake_manager.stats()["size"] == 1

    @pytest.mark.asyncio
    async def test_new_connection_string_evicts_old_entry(self, fake_manager):
        """자격 증명이 바뀌면 이전 커넥션을 닫고 교체."""
        old = await fake_manager.get_connection("ds-1", DataSourceType.MYSQL, "mysql://old@h/db")
        new = await fake_manager.get_connection("ds-1", DataSourceType.MYSQL, "mysql://new@h/db")

        assert new is not old
        assert old.closed
        assert old.close_calls == 1
        assert not fake_manager.has_connection("ds-1", "mysql://old@h/db")
        assert fake_manager.has_connection("ds-1", "mysql://new@h/db")
        assert fake_manager.stats()["size"] == 1

    @pytest.mark.asyncio
    async def test_different_data_sources_are_independent(self, fake_manager):
        a = await fake_manager.get_connection("ds-1", DataSourceType.SQLITE, "sqlite:///a.db")
        b = await fake_manager.get_connection("ds-2", DataSourceType.SQLITE, "sqlite:///b.db")
        assert a is not b
        assert not a.closed
        assert fake_manager.stats()["size"] == 2

    @pytest.mark.asyncio
    async def test_idle_entries_are_evicted(self, fake_manager, clock):
        conn = await fake_manager.get_connection("ds-1", DataSourceType.SQLITE, "sqlite:///a.db")
        clock.now += 30
        assert await fake_manager.evict_idle() == 0

        clock.now += 31
        assert await fake_manager.evict_idle() == 1
        assert conn.closed
        assert fake_manager.stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_idle_entry_is_replaced_on_access(self, fake_manager, clock):
        old = await fake_manager.get_connection("ds-1", DataSourceType.SQLITE, "sqlite:///a.db")
        clock.now += 120
        new = await fake_manager.get_connection("ds-1", DataSourceType.SQLITE, "sqlite:///a.db")
        assert new is not old
        assert old.closed

    @pytest.mark.asyncio
    async def test_unsupported_type(self, fake_manager):
        with pytest.raises(DataSourceConnectionError):
            await fake_manager.get_connection("ds-1", "ORACLE", "oracle://x")

    @pytest.mark.asyncio
    async def test_close_all(self, fake_manager):
        a = await fake_manager.get_connection("ds-1", DataSourceType.SQLITE, "sqlite:///a.db")
        b = await fake_manager.get_connection("ds-2", DataSourceType.SQLITE, "sqlite:///b.db")
        await fake_manager.close_all()
        assert a.closed and b.closed
        assert fake_manager.stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_close_connection_by_id(self, fake_manager):
        a = await fake_manager.get_connection("ds-1", DataSourceType.SQLITE, "sqlite:///a.db")
        assert await fake_manager.close_connection("ds-1") == 1
        assert a.closed
        assert await fake_manager.close_connection("ds-1") == 0

    @pytest.mark.asyncio
    async def test_stats_hide_connection_strings(self, fake_manager):
        await fake_manager.get_connection("ds-1", DataSourceType.POSTGRESQL, "postgresql://user:secret@h/db")
        stats = fake_manager.stats()
        assert "secret" not in str(stats)
        assert stats["entries"][0]["data_source_id"] == "ds-1"
        assert stats["entries"][0]["backend_type"] == "POSTGRESQL"


class TestSQLiteConnection:
    """실제 SQLite 파일 대상 커넥션."""

    @pytest.mark.asyncio
    async def test_query_returns_rows_in_column_order(self, connection_manager, sqlite_file):
        conn = await connection_manager.get_connection("ds-1", DataSourceType.SQLITE, f"sqlite:///{sqlite_file}")
        rows = await conn.query("SELECT id, amount, region FROM orders ORDER BY id")

        assert len(rows) == 3
        assert list(rows[0].keys()) == ["id", "amount", "region"]
        assert rows[1] == {"id": 2, "amount": 250, "region": "us"}

    @pytest.mark.asyncio
    async def test_test_connection(self, connection_manager, sqlite_file):
        conn = await connection_manager.get_connection("ds-1", DataSourceType.SQLITE, f"sqlite:///{sqlite_file}")
        assert await conn.test_connection() is True

    @pytest.mark.asyncio
    async def test_table_count_template(self, connection_manager, sqlite_file):
        conn = await connection_manager.get_connection("ds-1", DataSourceType.SQLITE, f"sqlite:///{sqlite_file}")
        rows = await conn.query(table_count_query(DataSourceType.SQLITE))
        assert rows[0]["count"] == 1

    @pytest.mark.asyncio
    async def test_bad_statement_raises_query_error(self, connection_manager, sqlite_file):
        conn = await connection_manager.get_connection("ds-1", DataSourceType.SQLITE, f"sqlite:///{sqlite_file}")
        with pytest.raises(QueryExecutionError) as exc_info:
            await conn.query("SELECT * FROM missing_table")
        assert "missing_table" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unreachable_backend(self, tmp_path):
        """열 수 없는 경로: query 는 연결 오류, test_connection 은 False."""
        conn = create_connection(
            DataSourceType.SQLITE,
            f"sqlite:///{tmp_path}/no/such/dir/db.sqlite",
            retry_attempts=1,
        )
        try:
            assert await conn.test_connection() is False
            with pytest.raises(DataSourceConnectionError):
                await conn.query("SELECT 1")
        finally:
            await conn.close()

    @pytest.mark.asyncio
    async def test_closed_connection_rejects_queries(self, sqlite_file):
        conn = create_connection(DataSourceType.SQLITE, f"sqlite:///{sqlite_file}")
        await conn.close()
        await conn.close()
        assert await conn.test_connection() is False
        with pytest.raises(DataSourceConnectionError):
            await conn.query("SELECT 1")


class TestDialects:

    def test_async_url_mapping(self):
        assert to_async_url(DataSourceType.POSTGRESQL, "postgres://u@h/db") == "postgresql+asyncpg://u@h/db"
        assert to_async_url(DataSourceType.MYSQL, "mysql://u@h/db") == "mysql+aiomysql://u@h/db"
        assert to_async_url(DataSourceType.SQLITE, "sqlite:///x.db") == "sqlite+aiosqlite:///x.db"
        assert to_async_url(DataSourceType.POSTGRESQL, "postgresql+asyncpg://u@h/db") == "postgresql+asyncpg://u@h/db"

    def test_scheme_mismatch(self):
        with pytest.raises(DataSourceConnectionError):
            to_async_url(DataSourceType.MYSQL, "postgresql://u@h/db")

    def test_unknown_dialect_falls_back_to_select_one(self):
        assert probe_query("ORACLE") == "SELECT 1"
        assert table_count_query("ORACLE") == "SELECT 1 AS count"

    def test_bigquery_connection_string(self):
        conn = create_connection(
            DataSourceType.BIGQUERY,
            "bigquery://my-project/analytics?location=EU",
        )
        assert conn.project_id == "my-project"
        assert conn.dataset_id == "analytics"
        assert conn.location == "EU"

    def test_invalid_bigquery_connection_string(self):
        with pytest.raises(DataSourceConnectionError):
            create_connection(DataSourceType.BIGQUERY, "postgresql://nope")
