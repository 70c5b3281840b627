"""외부 데이터 소스 커넥션.

방언과 무관하게 test_connection() / query(sql) / close() 계약을 제공한다.
- PostgreSQL / MySQL / SQLite: SQLAlchemy 비동기 엔진 (asyncpg / aiomysql / aiosqlite)
- BigQuery: google-cloud-bigquery 클라이언트 (동기 API 를 워커 스레드에서 실행)
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional
from urllib.parse import urlparse, parse_qs

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncConnection, create_async_engine
from sqlalchemy.pool import StaticPool
from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from core.exceptions import DataSourceConnectionError, QueryExecutionError
from models.data_source import DataSourceType
from integrations.datasource.dialects import probe_query

logger = logging.getLogger(__name__)

Row = dict[str, Any]

_ASYNC_DRIVERS = {
    DataSourceType.POSTGRESQL: ("postgresql+asyncpg", ("postgresql", "postgres")),
    DataSourceType.MYSQL: ("mysql+aiomysql", ("mysql",)),
    DataSourceType.SQLITE: ("sqlite+aiosqlite", ("sqlite",)),
}


def to_async_url(backend_type: DataSourceType, connection_string: str) -> str:
    """'postgresql://...' 형식을 비동기 드라이버 URL 로 변환. 드라이버가 명시돼 있으면 그대로."""
    driver, schemes = _ASYNC_DRIVERS[backend_type]
    scheme, sep, rest = connection_string.partition("://")
    if not sep:
        raise DataSourceConnectionError(f"Invalid connection string for {backend_type.value}")
    if "+" in scheme:
        return connection_string
    if scheme.lower() not in schemes:
        raise DataSourceConnectionError(
            f"Connection string scheme '{scheme}' does not match {backend_type.value}"
        )
    return f"{driver}://{rest}"


def _error_message(error: Exception) -> str:
    orig = getattr(error, "orig", None)
    return str(orig) if orig is not None else str(error)


class DatabaseConnection(ABC):
    """데이터 소스 커넥션 기본 클래스."""

    def __init__(
        self,
        backend_type: DataSourceType,
        connection_string: str,
        retry_attempts: int = 3,
    ):
        self.backend_type = backend_type
        self.connection_string = connection_string
        self.retry_attempts = max(1, retry_attempts)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    async def _execute(self, sql: str) -> list[Row]:
        """SQL 실행. 연결 실패는 DataSourceConnectionError, 실행 실패는 QueryExecutionError."""

    @abstractmethod
    async def _close(self) -> None:
        pass

    async def query(self, sql: str) -> list[Row]:
        if self._closed:
            raise DataSourceConnectionError("Connection is closed")
        return await self._execute(sql)

    async def test_connection(self) -> bool:
        """방언별 최소 왕복 쿼리. 백엔드가 죽어 있어도 예외 대신 False."""
        if self._closed:
            return False
        try:
            await self._execute(probe_query(self.backend_type))
            return True
        except Exception as e:
            logger.warning(f"Connection test failed ({self.backend_type.value}): {e}")
            return False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._close()

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
            retry=retry_if_exception_type(DataSourceConnectionError),
            reraise=True,
        )


class SQLAlchemyConnection(DatabaseConnection):
    """SQLAlchemy 비동기 엔진 기반 커넥션. 엔진은 첫 사용 시 생성된다."""

    def __init__(
        self,
        backend_type: DataSourceType,
        connection_string: str,
        retry_attempts: int = 3,
    ):
        super().__init__(backend_type, connection_string, retry_attempts)
        self.url = to_async_url(backend_type, connection_string)
        self._engine: Optional[AsyncEngine] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            if self.backend_type == DataSourceType.SQLITE:
                kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
                if ":memory:" in self.url or self.url.rstrip("/").endswith("sqlite+aiosqlite:"):
                    kwargs["poolclass"] = StaticPool
            else:
                kwargs = {
                    "pool_size": 5,
                    "max_overflow": 5,
                    "pool_pre_ping": True,
                    "pool_recycle": 1800,
                }
            self._engine = create_async_engine(self.url, **kwargs)
        return self._engine

    async def _connect(self) -> AsyncConnection:
        conn = self.engine.connect()
        try:
            await conn.start()
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            raise DataSourceConnectionError(
                f"Failed to connect to {self.backend_type.value}: {_error_message(e)}"
            ) from e
        return conn

    async def _execute(self, sql: str) -> list[Row]:
        async for attempt in self._retrying():
            with attempt:
                conn = await self._connect()

        try:
            result = await conn.execute(text(sql))
            if not result.returns_rows:
                return []
            return [dict(row._mapping) for row in result]
        except DBAPIError as e:
            if e.connection_invalidated:
                raise DataSourceConnectionError(_error_message(e)) from e
            raise QueryExecutionError(_error_message(e)) from e
        except SQLAlchemyError as e:
            raise QueryExecutionError(_error_message(e)) from e
        finally:
            await conn.close()

    async def _close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None


class BigQueryConnection(DatabaseConnection):
    """BigQuery 커넥션.

    연결 문자열 형식: bigquery://<project_id>/<dataset_id>?key_file=<path>&location=US
    """

    def __init__(
        self,
        backend_type: DataSourceType,
        connection_string: str,
        retry_attempts: int = 3,
        default_location: str = "US",
    ):
        super().__init__(backend_type, connection_string, retry_attempts)
        parsed = urlparse(connection_string)
        if parsed.scheme != "bigquery" or not parsed.hostname:
            raise DataSourceConnectionError("Invalid BigQuery connection string")
        params = parse_qs(parsed.query)
        self.project_id = parsed.hostname
        self.dataset_id = parsed.path.lstrip("/") or None
        self.key_file = params.get("key_file", [None])[0]
        self.location = params.get("location", [default_location])[0]
        self._client = None

    def _get_client(self):
        if self._client is None:
            from google.cloud import bigquery
            from google.oauth2 import service_account

            try:
                if self.key_file:
                    credentials = service_account.Credentials.from_service_account_file(self.key_file)
                    self._client = bigquery.Client(
                        project=self.project_id,
                        location=self.location,
                        credentials=credentials,
                    )
                else:
                    self._client = bigquery.Client(project=self.project_id, location=self.location)
            except Exception as e:
                raise DataSourceConnectionError(f"Failed to authenticate with BigQuery: {e}") from e
            logger.info(f"Created BigQuery client for project {self.project_id}")
        return self._client

    def _run_query(self, sql: str) -> list[Row]:
        from google.api_core import exceptions as gexc

        client = self._get_client()
        try:
            job = client.query(sql, location=self.location)
            return [dict(row.items()) for row in job.result()]
        except (gexc.Unauthorized, gexc.Forbidden, gexc.ServiceUnavailable) as e:
            raise DataSourceConnectionError(str(e)) from e
        except gexc.GoogleAPICallError as e:
            raise QueryExecutionError(str(e)) from e

    async def _execute(self, sql: str) -> list[Row]:
        async for attempt in self._retrying():
            with attempt:
                return await asyncio.to_thread(self._run_query, sql)
        return []

    async def _close(self) -> None:
        if self._client is not None:
            await asyncio.to_thread(self._client.close)
            self._client = None


_CONNECTION_CLASSES = {
    DataSourceType.POSTGRESQL: SQLAlchemyConnection,
    DataSourceType.MYSQL: SQLAlchemyConnection,
    DataSourceType.SQLITE: SQLAlchemyConnection,
    DataSourceType.BIGQUERY: BigQueryConnection,
}

_unhandled = set(DataSourceType) - set(_CONNECTION_CLASSES)
if _unhandled:
    raise RuntimeError(f"No connection class for data source types: {sorted(t.value for t in _unhandled)}")


def create_connection(
    backend_type: DataSourceType,
    connection_string: str,
    retry_attempts: int = 3,
    bigquery_location: str = "US",
) -> DatabaseConnection:
    """방언에 맞는 커넥션 객체 생성 (실제 연결은 첫 쿼리 시)."""
    connection_class = _CONNECTION_CLASSES[backend_type]
    if connection_class is BigQueryConnection:
        return BigQueryConnection(backend_type, connection_string, retry_attempts, bigquery_location)
    return connection_class(backend_type, connection_string, retry_attempts)
