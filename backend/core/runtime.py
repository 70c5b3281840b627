"""리프레시 엔진 런타임 컨테이너.

커넥션 풀, 결과 캐시, 실행 기록기, 스케줄러를 한데 묶는다.
FastAPI lifespan 에서 만들어 app.state.runtime 에 두고 종료 시 정리한다.
"""
import logging
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.cache import ResultCache
from core.config import Settings
from integrations.datasource import ConnectionManager
from scheduler import DispatchPool, RefreshScheduler
from services import ExecutionRecorder, TargetRefresher

logger = logging.getLogger(__name__)


@dataclass
class RefreshRuntime:
    settings: Settings
    connection_manager: ConnectionManager
    cache: ResultCache
    recorder: ExecutionRecorder
    refresher: TargetRefresher
    scheduler: RefreshScheduler

    async def dispose(self) -> None:
        await self.scheduler.shutdown()
        await self.connection_manager.close_all()
        self.cache.clear()
        logger.info("Refresh runtime disposed")


def build_runtime(settings: Settings, session_factory: async_sessionmaker) -> RefreshRuntime:
    connection_manager = ConnectionManager(
        idle_ttl_seconds=settings.connection_idle_ttl_seconds,
        retry_attempts=settings.connection_retry_attempts,
        bigquery_location=settings.bigquery_default_location,
    )
    cache = ResultCache(default_ttl=settings.result_cache_ttl_seconds)
    recorder = ExecutionRecorder(session_factory)
    refresher = TargetRefresher(session_factory, connection_manager, cache)
    scheduler = RefreshScheduler(
        session_factory=session_factory,
        recorder=recorder,
        refresher=refresher,
        pool=DispatchPool(
            max_workers=settings.refresh_max_concurrency,
            queue_size=settings.refresh_queue_size,
        ),
        connection_manager=connection_manager,
        tick_interval_minutes=settings.refresh_tick_interval_minutes,
        sweep_interval_minutes=settings.connection_sweep_interval_minutes,
        execution_timeout_seconds=settings.refresh_execution_timeout_seconds,
        stale_after_seconds=settings.refresh_execution_timeout_seconds + settings.refresh_stale_grace_seconds,
    )
    return RefreshRuntime(
        settings=settings,
        connection_manager=connection_manager,
        cache=cache,
        recorder=recorder,
        refresher=refresher,
        scheduler=scheduler,
    )


def get_runtime(request: Request) -> RefreshRuntime:
    """런타임 의존성."""
    return request.app.state.runtime
