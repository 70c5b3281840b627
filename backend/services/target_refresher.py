"""리프레시 대상 실행기.

대상 유형별로 실제 리프레시 동작을 수행하고 RefreshResult 를 반환한다.
- DASHBOARD: updated_at 갱신 + 대시보드 캐시 무효화 (records_affected = 1)
- QUERY: 저장된 SQL 을 데이터 소스에서 실행, 결과 행을 캐시에 저장
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.cache import ResultCache
from core.exceptions import QueryExecutionError
from core.timezone import now_utc
from integrations.datasource import ConnectionManager
from models import TargetType, QueryStatus
from services.target_resolver import TargetResolver, SQLAlchemyTargetResolver

logger = logging.getLogger(__name__)


@dataclass
class RefreshResult:
    records_affected: int
    metadata: dict[str, Any] = field(default_factory=dict)


class TargetRefresher:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        connection_manager: ConnectionManager,
        cache: ResultCache,
        resolver: Optional[TargetResolver] = None,
        clock: Callable = now_utc,
    ):
        self.session_factory = session_factory
        self.connection_manager = connection_manager
        self.cache = cache
        self.resolver = resolver or SQLAlchemyTargetResolver()
        self._clock = clock
        self._handlers = {
            TargetType.DASHBOARD: self._refresh_dashboard,
            TargetType.QUERY: self._refresh_query,
        }
        unhandled = set(TargetType) - set(self._handlers)
        if unhandled:
            raise RuntimeError(f"No refresh handler for target types: {sorted(t.value for t in unhandled)}")

    async def refresh(self, target_type: TargetType, target_id: str, user_id: str) -> RefreshResult:
        """대상 1건 리프레시. NotFoundError / DataSourceConnectionError / QueryExecutionError 를 그대로 전파."""
        handler = self._handlers[TargetType(target_type)]
        async with self.session_factory() as db:
            return await handler(db, target_id, user_id)

    async def _refresh_dashboard(self, db: AsyncSession, dashboard_id: str, user_id: str) -> RefreshResult:
        dashboard = await self.resolver.get_dashboard(db, dashboard_id, user_id)
        refreshed_at = self._clock()
        dashboard.updated_at = refreshed_at
        await db.commit()

        invalidated = self.cache.invalidate_prefix(ResultCache.dashboard_key(dashboard_id))
        logger.info(f"Dashboard {dashboard_id} refreshed ({invalidated} cache entries invalidated)")
        return RefreshResult(
            records_affected=1,
            metadata={
                "type": TargetType.DASHBOARD.value,
                "dashboard_id": dashboard_id,
                "refreshed_at": refreshed_at.isoformat(),
            },
        )

    async def _refresh_query(self, db: AsyncSession, query_id: str, user_id: str) -> RefreshResult:
        query = await self.resolver.get_query(db, query_id, user_id)
        if not query.sql_query:
            raise QueryExecutionError("Query has no SQL to execute")
        data_source = query.data_source
        if data_source is None:
            raise QueryExecutionError("Query has no data source")

        data_source_id = data_source.id
        sql_query = query.sql_query
        connection = await self.connection_manager.get_connection(
            data_source_id, data_source.type, data_source.connection_string
        )
        rows = await connection.query(sql_query)

        refreshed_at = self._clock()
        query.status = QueryStatus.COMPLETED
        query.last_row_count = len(rows)
        query.updated_at = refreshed_at
        await db.commit()

        self.cache.set(ResultCache.query_key(query_id), rows)
        logger.info(f"Query {query_id} refreshed: {len(rows)} rows")
        return RefreshResult(
            records_affected=len(rows),
            metadata={
                "type": TargetType.QUERY.value,
                "query_id": query_id,
                "sql_query": sql_query,
                "data_source_id": data_source_id,
                "refreshed_at": refreshed_at.isoformat(),
            },
        )
