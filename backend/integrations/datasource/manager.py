"""데이터 소스 커넥션 풀.

(data_source_id, connection_string) 쌍을 키로 커넥션을 재사용한다.
같은 data_source_id 에 다른 연결 문자열이 들어오면 (자격 증명 교체)
이전 엔트리를 닫고 제거한다. 유휴 TTL 을 넘긴 엔트리는 접근 시점 또는
주기적 스윕에서 닫은 뒤 제거한다.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from core.exceptions import DataSourceConnectionError
from models.data_source import DataSourceType
from integrations.datasource.connection import DatabaseConnection, create_connection
from integrations.datasource.dialects import resolve_dialect

logger = logging.getLogger(__name__)

PoolKey = tuple[str, str]
ConnectionFactory = Callable[[DataSourceType, str], DatabaseConnection]


@dataclass
class PoolEntry:
    data_source_id: str
    connection_string: str
    backend_type: DataSourceType
    connection: DatabaseConnection
    created_at: float
    last_used_at: float = field(default=0.0)

    @property
    def key(self) -> PoolKey:
        return (self.data_source_id, self.connection_string)


class ConnectionManager:
    """방언별 커넥션을 하나의 계약으로 제공하는 풀 관리자."""

    def __init__(
        self,
        idle_ttl_seconds: float = 900.0,
        retry_attempts: int = 3,
        bigquery_location: str = "US",
        connection_factory: Optional[ConnectionFactory] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.idle_ttl_seconds = idle_ttl_seconds
        self.retry_attempts = retry_attempts
        self.bigquery_location = bigquery_location
        self._factory = connection_factory or self._default_factory
        self._clock = clock
        self._entries: dict[PoolKey, PoolEntry] = {}
        self._key_locks: dict[PoolKey, asyncio.Lock] = {}

    def _default_factory(self, backend_type: DataSourceType, connection_string: str) -> DatabaseConnection:
        return create_connection(
            backend_type,
            connection_string,
            retry_attempts=self.retry_attempts,
            bigquery_location=self.bigquery_location,
        )

    def _lock_for(self, key: PoolKey) -> asyncio.Lock:
        lock = self._key_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._key_locks[key] = lock
        return lock

    async def get_connection(
        self,
        data_source_id: str,
        backend_type: Union[DataSourceType, str],
        connection_string: str,
    ) -> DatabaseConnection:
        """풀에 있으면 재사용, 없으면 새로 만들어 등록한다."""
        dialect = resolve_dialect(backend_type)
        if dialect is None:
            raise DataSourceConnectionError(f"Unsupported database type: {backend_type}")

        key = (data_source_id, connection_string)
        await self._evict_replaced(data_source_id, connection_string)
        await self.evict_idle()

        async with self._lock_for(key):
            entry = self._entries.get(key)
            if entry is not None and not entry.connection.closed:
                entry.last_used_at = self._clock()
                return entry.connection

            connection = self._factory(dialect, connection_string)
            now = self._clock()
            self._entries[key] = PoolEntry(
                data_source_id=data_source_id,
                connection_string=connection_string,
                backend_type=dialect,
                connection=connection,
                created_at=now,
                last_used_at=now,
            )
            logger.info(f"Opened {dialect.value} connection for data source {data_source_id}")

        # 동시에 다른 연결 문자열로 들어온 요청이 남긴 엔트리 정리
        await self._evict_replaced(data_source_id, connection_string)
        return connection

    async def _evict_replaced(self, data_source_id: str, connection_string: str) -> None:
        stale = [
            key for key in self._entries
            if key[0] == data_source_id and key[1] != connection_string
        ]
        for key in stale:
            logger.info(f"Connection string changed for data source {data_source_id}, evicting old connection")
            await self._evict(key)

    async def _evict(self, key: PoolKey) -> bool:
        entry = self._entries.pop(key, None)
        lock = self._key_locks.get(key)
        if lock is not None and not lock.locked():
            del self._key_locks[key]
        if entry is None:
            return False
        try:
            await entry.connection.close()
        except Exception as e:
            logger.warning(f"Failed to close connection for data source {entry.data_source_id}: {e}")
        return True

    async def evict_idle(self) -> int:
        """유휴 TTL 을 넘긴 엔트리를 닫고 제거. 제거한 개수 반환."""
        now = self._clock()
        expired = [
            key for key, entry in self._entries.items()
            if now - entry.last_used_at > self.idle_ttl_seconds
        ]
        for key in expired:
            await self._evict(key)
        if expired:
            logger.info(f"Evicted {len(expired)} idle data source connection(s)")
        return len(expired)

    async def close_connection(self, data_source_id: str) -> int:
        keys = [key for key in self._entries if key[0] == data_source_id]
        for key in keys:
            await self._evict(key)
        return len(keys)

    async def close_all(self) -> None:
        keys = list(self._entries)
        await asyncio.gather(*(self._evict(key) for key in keys))
        self._key_locks.clear()
        if keys:
            logger.info(f"Closed {len(keys)} data source connection(s)")

    def has_connection(self, data_source_id: str, connection_string: Optional[str] = None) -> bool:
        if connection_string is not None:
            return (data_source_id, connection_string) in self._entries
        return any(key[0] == data_source_id for key in self._entries)

    def stats(self) -> dict:
        """풀 현황. 연결 문자열(자격 증명)은 노출하지 않는다."""
        now = self._clock()
        entries = list(self._entries.values())
        return {
            "size": len(entries),
            "idle_ttl_seconds": self.idle_ttl_seconds,
            "entries": [
                {
                    "data_source_id": e.data_source_id,
                    "backend_type": e.backend_type.value,
                    "idle_seconds": round(now - e.last_used_at, 1),
                }
                for e in entries
            ],
        }
