"""스케줄러 루프 상태 조회 / 시작 / 중지."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_async_db
from core.runtime import RefreshRuntime, get_runtime
from schemas import CronStatusResponse, ScheduleResponse
from services import ScheduleService

router = APIRouter()


async def _status(runtime: RefreshRuntime, db: AsyncSession, message: str = None) -> CronStatusResponse:
    status = await runtime.scheduler.status()
    active = await ScheduleService(db).list_active()
    return CronStatusResponse(
        **status,
        active_schedules=[ScheduleResponse.model_validate(s) for s in active],
        message=message,
    )


@router.get("/status", response_model=CronStatusResponse)
async def get_cron_status(
    runtime: RefreshRuntime = Depends(get_runtime),
    db: AsyncSession = Depends(get_async_db),
):
    return await _status(runtime, db)


@router.post("/status", response_model=CronStatusResponse)
async def start_cron(
    runtime: RefreshRuntime = Depends(get_runtime),
    db: AsyncSession = Depends(get_async_db),
):
    started = runtime.scheduler.start()
    message = "Scheduler started" if started else "Scheduler already running"
    return await _status(runtime, db, message)


@router.delete("/status", response_model=CronStatusResponse)
async def stop_cron(
    runtime: RefreshRuntime = Depends(get_runtime),
    db: AsyncSession = Depends(get_async_db),
):
    stopped = runtime.scheduler.stop()
    message = "Scheduler stopped" if stopped else "Scheduler not running"
    return await _status(runtime, db, message)
