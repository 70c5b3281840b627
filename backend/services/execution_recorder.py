"""리프레시 실행 기록.

실행 1건의 수명주기: begin() 으로 RUNNING 행을 즉시 커밋하고,
complete()/fail() 이 실행 종료와 스케줄 상태 갱신을 한 트랜잭션으로 커밋한다.
저장 단계의 DB 오류는 InternalError 로 감싸서 올린다.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core import cron_utils
from core.exceptions import ExecutionStateError, NotFoundError, InternalError
from core.timezone import now_utc
from models import (
    RefreshExecution,
    RefreshSchedule,
    ExecutionStatus,
    ScheduleType,
    MANUAL_SCHEDULE_ID,
)
from services.target_refresher import RefreshResult

logger = logging.getLogger(__name__)

STALE_EXECUTION_MESSAGE = "Execution abandoned: no result recorded within {seconds} seconds"
RESTART_EXECUTION_MESSAGE = "Execution abandoned: process restarted before a result was recorded"


def compute_next_run(schedule: RefreshSchedule, now: datetime) -> Optional[datetime]:
    """다음 실행 시각 (naive UTC). 폴링 대상이 아니면 None."""
    if not schedule.is_polled:
        return None
    if schedule.schedule_type == ScheduleType.INTERVAL:
        if not schedule.interval or schedule.interval < 1:
            return None
        return now + timedelta(minutes=schedule.interval)
    try:
        return cron_utils.next_run(schedule.cron_expression, schedule.timezone, now)
    except ValueError as e:
        logger.warning(f"Schedule {schedule.id}: cannot compute next cron run: {e}")
        return None


def _duration_ms(started_at: datetime, finished_at: datetime) -> int:
    return max(0, int((finished_at - started_at).total_seconds() * 1000))


class ExecutionRecorder:
    def __init__(self, session_factory: async_sessionmaker, clock: Callable[[], datetime] = now_utc):
        self.session_factory = session_factory
        self._clock = clock

    async def begin(self, schedule_id: str = MANUAL_SCHEDULE_ID) -> str:
        """RUNNING 실행 행을 만들어 바로 커밋하고 ID 반환."""
        async with self.session_factory() as db:
            execution = RefreshExecution(
                schedule_id=schedule_id,
                status=ExecutionStatus.RUNNING,
                started_at=self._clock(),
                records_affected=0,
                metadata_={},
            )
            db.add(execution)
            await db.commit()
            return execution.id

    async def complete(self, execution_id: str, result: RefreshResult) -> RefreshExecution:
        try:
            async with self.session_factory() as db:
                execution = await self._get_running(db, execution_id)
                now = self._clock()
                execution.status = ExecutionStatus.COMPLETED
                execution.completed_at = now
                execution.duration = _duration_ms(execution.started_at, now)
                execution.records_affected = result.records_affected
                execution.metadata_ = dict(result.metadata)

                schedule = await self._get_schedule(db, execution.schedule_id)
                if schedule is not None:
                    schedule.last_run_at = now
                    schedule.run_count = (schedule.run_count or 0) + 1
                    schedule.last_error = None
                    schedule.next_run_at = compute_next_run(schedule, now)

                await db.commit()
                return execution
        except SQLAlchemyError as e:
            raise InternalError(f"Failed to record completion of execution {execution_id}: {e}") from e

    async def fail(self, execution_id: str, error_message: str) -> RefreshExecution:
        try:
            async with self.session_factory() as db:
                execution = await self._get_running(db, execution_id)
                now = self._clock()
                execution.status = ExecutionStatus.FAILED
                execution.completed_at = now
                execution.duration = _duration_ms(execution.started_at, now)
                execution.error_message = error_message

                schedule = await self._get_schedule(db, execution.schedule_id)
                if schedule is not None:
                    self._charge_failure(schedule, error_message, now)

                await db.commit()
                return execution
        except SQLAlchemyError as e:
            raise InternalError(f"Failed to record failure of execution {execution_id}: {e}") from e

    async def recover_stale(self, stale_after_seconds: Optional[float] = None) -> int:
        """RUNNING 으로 남은 실행을 FAILED 로 정리하고 정리한 개수 반환.

        stale_after_seconds 가 None 이면 RUNNING 전부를 정리한다. 기동 직후에는
        진행 중인 디스패치가 없으므로 이 형태로 호출한다. 값을 주면 그보다 오래
        RUNNING 인 것만 정리하며, 스케줄러의 주기 job 이 이 형태를 쓴다.
        """
        now = self._clock()
        conditions = [RefreshExecution.status == ExecutionStatus.RUNNING]
        if stale_after_seconds is None:
            message = RESTART_EXECUTION_MESSAGE
        else:
            conditions.append(RefreshExecution.started_at < now - timedelta(seconds=stale_after_seconds))
            message = STALE_EXECUTION_MESSAGE.format(seconds=int(stale_after_seconds))

        async with self.session_factory() as db:
            result = await db.execute(select(RefreshExecution).where(*conditions))
            stale = result.scalars().all()
            for execution in stale:
                execution.status = ExecutionStatus.FAILED
                execution.completed_at = now
                execution.duration = _duration_ms(execution.started_at, now)
                execution.error_message = message

                schedule = await self._get_schedule(db, execution.schedule_id)
                # 이후 실행이 이미 스케줄을 갱신했다면 건드리지 않음
                if schedule is not None and (
                    schedule.last_run_at is None or schedule.last_run_at <= execution.started_at
                ):
                    self._charge_failure(schedule, message, now)

            await db.commit()

        if stale:
            logger.warning(f"Recovered {len(stale)} stale RUNNING execution(s)")
        return len(stale)

    def _charge_failure(self, schedule: RefreshSchedule, error_message: str, now: datetime) -> None:
        schedule.last_run_at = now
        schedule.error_count = (schedule.error_count or 0) + 1
        schedule.last_error = error_message
        # 실패해도 다음 실행 시각을 밀어서 매 tick 재시도되지 않도록 함
        schedule.next_run_at = compute_next_run(schedule, now)

    async def _get_running(self, db: AsyncSession, execution_id: str) -> RefreshExecution:
        execution = await db.get(RefreshExecution, execution_id)
        if execution is None:
            raise NotFoundError(f"Execution {execution_id} not found")
        if execution.is_terminal:
            raise ExecutionStateError(
                f"Execution {execution_id} already finished with status {execution.status.value}"
            )
        return execution

    async def _get_schedule(self, db: AsyncSession, schedule_id: str) -> Optional[RefreshSchedule]:
        if schedule_id == MANUAL_SCHEDULE_ID:
            return None
        return await db.get(RefreshSchedule, schedule_id)
