"""리프레시 대상(대시보드/저장 쿼리) 조회."""
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import NotFoundError
from models import Dashboard, SavedQuery, TargetType


class TargetResolver(ABC):
    """대상 ID + 소유자로 리프레시 대상을 찾는다. 없거나 남의 것이면 NotFoundError."""

    @abstractmethod
    async def get_dashboard(self, db: AsyncSession, dashboard_id: str, user_id: str) -> Dashboard:
        pass

    @abstractmethod
    async def get_query(self, db: AsyncSession, query_id: str, user_id: str) -> SavedQuery:
        pass

    @abstractmethod
    async def target_names(self, db: AsyncSession, targets: list[tuple[TargetType, str]]) -> dict:
        pass


class SQLAlchemyTargetResolver(TargetResolver):

    async def get_dashboard(self, db: AsyncSession, dashboard_id: str, user_id: str) -> Dashboard:
        result = await db.execute(
            select(Dashboard).where(Dashboard.id == dashboard_id, Dashboard.user_id == user_id)
        )
        dashboard = result.scalar_one_or_none()
        if dashboard is None:
            raise NotFoundError("Dashboard not found")
        return dashboard

    async def get_query(self, db: AsyncSession, query_id: str, user_id: str) -> SavedQuery:
        # data_source 는 joined 로딩
        result = await db.execute(
            select(SavedQuery).where(SavedQuery.id == query_id, SavedQuery.user_id == user_id)
        )
        query = result.scalar_one_or_none()
        if query is None:
            raise NotFoundError("Query not found")
        return query

    async def target_names(self, db: AsyncSession, targets: list[tuple[TargetType, str]]) -> dict:
        """(target_type, target_id) -> 표시 이름. 삭제된 대상은 'Deleted Dashboard'/'Deleted Query'."""
        dashboard_ids = {tid for ttype, tid in targets if ttype == TargetType.DASHBOARD}
        query_ids = {tid for ttype, tid in targets if ttype == TargetType.QUERY}

        dashboards: dict[str, str] = {}
        if dashboard_ids:
            rows = await db.execute(
                select(Dashboard.id, Dashboard.name).where(Dashboard.id.in_(dashboard_ids))
            )
            dashboards = {row.id: row.name for row in rows}

        queries: dict[str, Optional[str]] = {}
        if query_ids:
            rows = await db.execute(
                select(SavedQuery.id, SavedQuery.natural_query).where(SavedQuery.id.in_(query_ids))
            )
            queries = {row.id: row.natural_query for row in rows}

        names = {}
        for ttype, tid in targets:
            if ttype == TargetType.DASHBOARD:
                names[(ttype, tid)] = dashboards.get(tid, "Deleted Dashboard")
            elif tid in queries:
                names[(ttype, tid)] = queries[tid] or "Untitled Query"
            else:
                names[(ttype, tid)] = "Deleted Query"
        return names
