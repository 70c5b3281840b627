"""스케줄러 트리거 엔드포인트 (외부 cron 이 Bearer 토큰으로 호출)."""
import logging
from fastapi import APIRouter, Depends

from core.auth import verify_scheduler_token
from core.runtime import RefreshRuntime, get_runtime
from schemas import SchedulerTickResponse, TickResultItem

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/scheduler", response_model=SchedulerTickResponse, dependencies=[Depends(verify_scheduler_token)])
async def run_scheduler_tick(runtime: RefreshRuntime = Depends(get_runtime)):
    """실행 시각이 된 스케줄을 지금 한 번 처리."""
    summary = await runtime.scheduler.tick()
    return SchedulerTickResponse(
        success=True,
        schedules_processed=summary.schedules_processed,
        results=[
            TickResultItem(
                schedule_id=r.schedule_id,
                status=r.status,
                duration=r.duration,
                records_affected=r.records_affected,
                error=r.error,
            )
            for r in summary.results
        ],
        skipped=summary.skipped,
    )
