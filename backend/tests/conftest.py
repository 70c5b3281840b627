"""pytest 설정 및 fixtures."""
import os

# 앱 import 전에 테스트용 설정 주입 (인메모리 SQLite, 주기 스케줄러 비활성)
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["SCHEDULER_TOKEN"] = "test-token"
# 인메모리 SQLite 는 커넥션 하나를 공유하므로 디스패치를 직렬화
os.environ["REFRESH_MAX_CONCURRENCY"] = "1"

from datetime import timedelta

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

import models
from core.cache import ResultCache
from core.database import Base, async_session_maker
from core.timezone import now_utc
from integrations.datasource import ConnectionManager
from models import (
    Dashboard,
    DataSource,
    DataSourceType,
    RefreshSchedule,
    SavedQuery,
    ScheduleType,
    TargetType,
)
from services import ExecutionRecorder, TargetRefresher
from main import app

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
SCHEDULER_AUTH = {"Authorization": "Bearer test-token"}
USER_HEADERS = {"X-User-Id": USER_ID}


# ---- 데이터 빌더 ----

def make_dashboard(dashboard_id="dash-1", user_id=USER_ID, name="Sales Overview"):
    return Dashboard(id=dashboard_id, name=name, user_id=user_id)


def make_data_source(path, data_source_id="ds-1", user_id=USER_ID):
    return DataSource(
        id=data_source_id,
        name="Local SQLite",
        type=DataSourceType.SQLITE,
        connection_string=f"sqlite:///{path}",
        user_id=user_id,
    )


def make_query(query_id="query-1", user_id=USER_ID, data_source_id="ds-1",
               sql="SELECT id, amount FROM orders ORDER BY id", natural="Orders by id"):
    return SavedQuery(
        id=query_id,
        natural_query=natural,
        sql_query=sql,
        data_source_id=data_source_id,
        user_id=user_id,
    )


def make_schedule(schedule_id="sched-1", target_type=TargetType.DASHBOARD, target_id="dash-1",
                  schedule_type=ScheduleType.INTERVAL, interval=15, cron_expression=None,
                  is_active=True, next_run_at="due", user_id=USER_ID, last_run_at=None):
    if next_run_at == "due":
        next_run_at = now_utc() - timedelta(minutes=1)
    return RefreshSchedule(
        id=schedule_id,
        name=f"Schedule {schedule_id}",
        target_type=target_type,
        target_id=target_id,
        schedule_type=schedule_type,
        interval=interval if schedule_type == ScheduleType.INTERVAL else None,
        cron_expression=cron_expression,
        timezone="UTC",
        is_active=is_active,
        next_run_at=next_run_at,
        last_run_at=last_run_at,
        run_count=0,
        error_count=0,
        user_id=user_id,
    )


# ---- 외부 데이터 소스 (파일 SQLite) ----

@pytest.fixture
def sqlite_file(tmp_path):
    """orders 테이블(3행)이 있는 SQLite 파일."""
    path = tmp_path / "warehouse.db"
    engine = create_engine(f"sqlite:///{path}")
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE orders (id INTEGER PRIMARY KEY, amount INTEGER, region TEXT)"))
        conn.execute(text(
            "INSERT INTO orders (id, amount, region) VALUES (1, 100, 'kr'), (2, 250, 'us'), (3, 75, 'jp')"
        ))
    engine.dispose()
    return path


# ---- 엔진 단위 테스트용 DB ----

@pytest_asyncio.fixture
async def db_engine():
    """테스트마다 새 인메모리 DB."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    assert models  # 모델 등록
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def add(session_factory):
    """객체들을 저장하는 헬퍼."""
    async def _add(*objects):
        async with session_factory() as db:
            db.add_all(objects)
            await db.commit()
        return objects
    return _add


@pytest_asyncio.fixture
async def connection_manager():
    manager = ConnectionManager(idle_ttl_seconds=900, retry_attempts=1)
    yield manager
    await manager.close_all()


@pytest.fixture
def result_cache():
    return ResultCache(default_ttl=60)


@pytest.fixture
def recorder(session_factory):
    return ExecutionRecorder(session_factory)


@pytest.fixture
def refresher(session_factory, connection_manager, result_cache):
    return TargetRefresher(session_factory, connection_manager, result_cache)


# ---- API 테스트 ----

@pytest.fixture(scope="function")
def client():
    """테스트 클라이언트. lifespan 종료 시 인메모리 DB 가 폐기되어 테스트마다 새 DB."""
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def seed(client):
    """앱 이벤트 루프에서 테스트 데이터를 저장하는 헬퍼."""
    def _seed(*objects):
        async def _add():
            async with async_session_maker() as db:
                db.add_all(objects)
                await db.commit()
        client.portal.call(_add)
        return objects
    return _seed
