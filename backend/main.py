import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from contextlib import asynccontextmanager

from core.config import get_settings
from core.database import async_session_maker, init_db, dispose_db
from core.exceptions import RefreshEngineError
from core.runtime import build_runtime
from api.v1 import refresh_scheduler, refresh_execute, refresh_schedules, cron_tools, cron_status, datasources, health

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await init_db()

    runtime = build_runtime(settings, async_session_maker)
    app.state.runtime = runtime

    # 기동 직후에는 진행 중인 디스패치가 없으므로 남아 있는 RUNNING 실행은 모두 이전 프로세스의 것
    await runtime.recorder.recover_stale()

    if settings.scheduler_enabled:
        runtime.scheduler.start()
    else:
        logger.info("Scheduler is disabled by configuration")
    logger.info("Application started")

    yield

    # Shutdown
    await runtime.dispose()
    await dispose_db()
    logger.info("Application shutdown")


app = FastAPI(
    title="Refresh Engine API",
    description="대시보드/쿼리 리프레시 스케줄링 및 실행 엔진",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RefreshEngineError)
async def refresh_engine_error_handler(request: Request, exc: RefreshEngineError):
    """라우터가 변환하지 않은 엔진 예외 (인증 실패, 저장 오류 등)."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


app.include_router(refresh_scheduler.router, prefix="/api/v1/refresh", tags=["refresh-scheduler"])
app.include_router(refresh_execute.router, prefix="/api/v1/refresh", tags=["refresh-execute"])
app.include_router(refresh_schedules.router, prefix="/api/v1/refresh/schedules", tags=["refresh-schedules"])
app.include_router(cron_tools.router, prefix="/api/v1/refresh/cron", tags=["cron-tools"])
app.include_router(cron_status.router, prefix="/api/v1/cron", tags=["cron-status"])
app.include_router(datasources.router, prefix="/api/v1/datasources", tags=["datasources"])
app.include_router(health.router, prefix="/api/v1/health", tags=["health"])


@app.get("/health")
async def health_check():
    runtime = getattr(app.state, "runtime", None)
    return {
        "status": "healthy",
        "scheduler_running": runtime.scheduler.is_running if runtime else False,
        "connection_pool": runtime.connection_manager.stats() if runtime else None,
    }


@app.get("/api/v1/scheduler/status")
async def scheduler_status():
    """스케줄러 상태 조회 (등록된 job 포함)."""
    runtime = app.state.runtime
    status = await runtime.scheduler.status()
    return {**status, "jobs": runtime.scheduler.get_jobs()}
