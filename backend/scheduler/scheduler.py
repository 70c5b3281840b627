"""리프레시 스케줄러.

tick() 한 번에 실행 시각이 지난 활성 스케줄(INTERVAL/CRON)을 골라 디스패치한다.
주기 실행은 APScheduler AsyncIOScheduler 의 interval job 으로 등록하며,
같은 스케줄러에 커넥션 풀 유휴 정리 job 도 함께 등록한다.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.exceptions import RefreshEngineError, ExecutionStateError, NotFoundError, InternalError
from core.timezone import now_utc
from integrations.datasource import ConnectionManager
from models import (
    RefreshExecution,
    RefreshSchedule,
    ExecutionStatus,
    TargetType,
    POLLED_SCHEDULE_TYPES,
    MANUAL_SCHEDULE_ID,
)
from scheduler.dispatch_pool import DispatchPool
from services.execution_recorder import ExecutionRecorder
from services.target_refresher import TargetRefresher, RefreshResult

logger = logging.getLogger(__name__)

TICK_JOB_ID = "refresh_tick"
SWEEP_JOB_ID = "connection_sweep"
RECOVERY_JOB_ID = "execution_recovery"


@dataclass
class DueSchedule:
    id: str
    target_type: TargetType
    target_id: str
    user_id: str


@dataclass
class TickResult:
    schedule_id: str
    status: ExecutionStatus
    duration: Optional[int] = None  # ms
    records_affected: Optional[int] = None
    error: Optional[str] = None


@dataclass
class TickSummary:
    schedules_processed: int = 0
    results: list[TickResult] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


@dataclass
class AdhocResult:
    success: bool
    execution: RefreshExecution
    duration: int
    records_affected: int
    error: Optional[str] = None


class RefreshScheduler:
    """스케줄 폴링 루프 + 디스패처."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        recorder: ExecutionRecorder,
        refresher: TargetRefresher,
        pool: DispatchPool,
        connection_manager: Optional[ConnectionManager] = None,
        tick_interval_minutes: int = 5,
        sweep_interval_minutes: int = 5,
        execution_timeout_seconds: float = 300.0,
        stale_after_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.session_factory = session_factory
        self.recorder = recorder
        self.refresher = refresher
        self.pool = pool
        self.connection_manager = connection_manager
        self.tick_interval_minutes = tick_interval_minutes
        self.sweep_interval_minutes = sweep_interval_minutes
        self.execution_timeout_seconds = execution_timeout_seconds
        self.stale_after_seconds = stale_after_seconds
        self._clock = clock

        self._scheduler: Optional[AsyncIOScheduler] = None
        self._accepting = True  # 주기 tick 수락 여부 (stop 시 False)
        self._closed = False  # shutdown 이후 모든 디스패치 거부
        self._last_tick_at: Optional[datetime] = None
        self._in_flight: set[str] = set()
        self._in_flight_lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

    # ---- APScheduler 수명주기 ----

    def _build_scheduler(self) -> AsyncIOScheduler:
        scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,  # 놓친 tick 은 한 번만
                "max_instances": 1,  # tick 중첩 방지
                "misfire_grace_time": 60,
            },
        )
        scheduler.add_listener(self._job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
        scheduler.add_job(
            self._scheduled_tick,
            trigger=IntervalTrigger(minutes=self.tick_interval_minutes),
            id=TICK_JOB_ID,
            replace_existing=True,
        )
        if self.connection_manager is not None:
            scheduler.add_job(
                self.connection_manager.evict_idle,
                trigger=IntervalTrigger(minutes=self.sweep_interval_minutes),
                id=SWEEP_JOB_ID,
                replace_existing=True,
            )
        if self.stale_after_seconds is not None:
            # 저장 실패로 RUNNING 에 남은 실행 정리
            scheduler.add_job(
                self.recorder.recover_stale,
                trigger=IntervalTrigger(minutes=self.sweep_interval_minutes),
                args=[self.stale_after_seconds],
                id=RECOVERY_JOB_ID,
                replace_existing=True,
            )
        return scheduler

    def _job_listener(self, event: JobExecutionEvent):
        if event.exception:
            logger.error(
                f"Job {event.job_id} failed: {event.exception}",
                exc_info=event.exception,
            )
        else:
            logger.debug(f"Job {event.job_id} executed successfully")

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> bool:
        """주기 tick 시작. 이미 실행 중이거나 종료된 스케줄러면 False."""
        if self._closed:
            return False
        self._accepting = True
        if self.is_running:
            return False
        self._scheduler = self._build_scheduler()
        self._scheduler.start()
        logger.info(f"Refresh scheduler started (tick every {self.tick_interval_minutes} minutes)")
        return True

    def stop(self) -> bool:
        """주기 tick 중지. 진행 중인 디스패치는 끝까지 수행된다.

        외부 트리거(/refresh/scheduler)의 tick() 호출은 계속 처리한다.
        """
        self._accepting = False
        if not self.is_running:
            return False
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Refresh scheduler stopped")
        return True

    async def shutdown(self) -> None:
        """stop() 후 진행 중인 디스패치가 끝날 때까지 대기하고 풀을 닫는다."""
        self.stop()
        self._closed = True
        await self.pool.close()

    # ---- in-flight 관리 ----

    def _get_lock(self) -> asyncio.Lock:
        current_loop = asyncio.get_running_loop()
        if self._in_flight_lock is None or self._lock_loop is not current_loop:
            self._in_flight_lock = asyncio.Lock()
            self._lock_loop = current_loop
        return self._in_flight_lock

    async def _claim(self, schedule_id: str) -> bool:
        async with self._get_lock():
            if schedule_id in self._in_flight:
                return False
            self._in_flight.add(schedule_id)
            return True

    async def _release(self, schedule_id: str) -> None:
        async with self._get_lock():
            self._in_flight.discard(schedule_id)

    def in_flight(self) -> list[str]:
        return sorted(self._in_flight)

    # ---- tick ----

    async def _scheduled_tick(self) -> None:
        """APScheduler 주기 job. stop() 이후에 발화한 tick 은 무시한다."""
        if not self._accepting:
            logger.info("Refresh scheduler is stopped, scheduled tick ignored")
            return
        await self.tick()

    async def tick(self) -> TickSummary:
        """실행 시각이 된 스케줄을 한 번씩 디스패치."""
        summary = TickSummary()
        if self._closed:
            logger.info("Refresh scheduler is shut down, tick ignored")
            return summary

        now = self._clock()
        self._last_tick_at = now
        due = await self._due_schedules(now)

        claimed: list[DueSchedule] = []
        try:
            for schedule in due:
                if not await self._claim(schedule.id):
                    logger.info(f"Schedule {schedule.id} is still running, skipped")
                    summary.skipped.append(schedule.id)
                elif await self._still_due(schedule.id, now):
                    claimed.append(schedule)
                else:
                    # 목록 조회 뒤 이전 실행이 끝나 next_run_at 이 이미 밀린 경우
                    logger.info(f"Schedule {schedule.id} already ran for this due time, skipped")
                    await self._release(schedule.id)
        except BaseException:
            for schedule in claimed:
                await self._release(schedule.id)
            raise

        if claimed:
            results = await asyncio.gather(
                *(self.pool.run(self._dispatch, schedule) for schedule in claimed),
                return_exceptions=True,
            )
            for schedule, result in zip(claimed, results):
                if isinstance(result, BaseException):
                    # 풀에 들어가지 못한 경우. _dispatch 자체는 예외를 내지 않는다
                    logger.error(f"Failed to dispatch schedule {schedule.id}: {result}")
                    await self._release(schedule.id)
                    result = TickResult(schedule.id, ExecutionStatus.FAILED, error=str(result))
                summary.results.append(result)

        summary.schedules_processed = len(summary.results)
        if due:
            failed = sum(1 for r in summary.results if r.status == ExecutionStatus.FAILED)
            logger.info(
                f"Refresh tick: {summary.schedules_processed} processed, {failed} failed, "
                f"{len(summary.skipped)} skipped"
            )
        return summary

    async def _still_due(self, schedule_id: str, now: datetime) -> bool:
        """claim 직후 재확인. 활성 상태이고 next_run_at 이 아직 now 이전이어야 한다."""
        try:
            async with self.session_factory() as db:
                next_run_at = await db.scalar(
                    select(RefreshSchedule.next_run_at).where(
                        RefreshSchedule.id == schedule_id,
                        RefreshSchedule.is_active.is_(True),
                    )
                )
        except BaseException:
            await self._release(schedule_id)
            raise
        return next_run_at is not None and next_run_at <= now

    async def _due_schedules(self, now: datetime) -> list[DueSchedule]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(
                    RefreshSchedule.id,
                    RefreshSchedule.target_type,
                    RefreshSchedule.target_id,
                    RefreshSchedule.user_id,
                )
                .where(
                    RefreshSchedule.is_active.is_(True),
                    RefreshSchedule.schedule_type.in_(POLLED_SCHEDULE_TYPES),
                    RefreshSchedule.next_run_at.is_not(None),
                    RefreshSchedule.next_run_at <= now,
                )
                .order_by(RefreshSchedule.next_run_at)
            )
            return [DueSchedule(*row) for row in result.all()]

    async def _dispatch(self, schedule: DueSchedule) -> TickResult:
        """스케줄 1건 실행. 어떤 실패도 TickResult 로 돌려주며 예외를 내지 않는다."""
        try:
            try:
                execution_id = await self.recorder.begin(schedule.id)
            except Exception as e:
                logger.error(f"Failed to record execution start for schedule {schedule.id}: {e}", exc_info=True)
                return TickResult(schedule.id, ExecutionStatus.FAILED, error=str(e))

            result, error = await self._run_refresh(
                schedule.target_type, schedule.target_id, schedule.user_id
            )
            execution = await self._finish(execution_id, result, error)
            if execution is None:
                return TickResult(schedule.id, ExecutionStatus.FAILED, error=error or "Failed to record execution result")
            return TickResult(
                schedule_id=schedule.id,
                status=execution.status,
                duration=execution.duration,
                records_affected=execution.records_affected if result is not None else None,
                error=execution.error_message,
            )
        finally:
            await self._release(schedule.id)

    async def _run_refresh(
        self, target_type: TargetType, target_id: str, user_id: str
    ) -> tuple[Optional[RefreshResult], Optional[str]]:
        try:
            result = await asyncio.wait_for(
                self.refresher.refresh(target_type, target_id, user_id),
                timeout=self.execution_timeout_seconds,
            )
            return result, None
        except asyncio.TimeoutError:
            return None, f"Refresh timed out after {self.execution_timeout_seconds:g} seconds"
        except RefreshEngineError as e:
            return None, e.message
        except Exception as e:
            logger.error(f"Unexpected refresh failure for {target_type.value}:{target_id}: {e}", exc_info=True)
            return None, str(e) or e.__class__.__name__

    async def _finish(
        self, execution_id: str, result: Optional[RefreshResult], error: Optional[str]
    ) -> Optional[RefreshExecution]:
        """실행 종료 기록. 저장 실패 시 RUNNING 으로 남기고 None (recover_stale 대상)."""
        try:
            if result is not None:
                return await self.recorder.complete(execution_id, result)
            return await self.recorder.fail(execution_id, error)
        except InternalError as e:
            logger.error(e.message, exc_info=True)
            return None
        except Exception:
            logger.exception(f"Failed to record result of execution {execution_id}")
            return None

    # ---- 수동 실행 ----

    async def execute_adhoc(
        self,
        target_type: TargetType,
        target_id: str,
        user_id: str,
        schedule_id: Optional[str] = None,
    ) -> AdhocResult:
        """즉시 실행. 대상/스케줄이 없으면 NotFoundError 를 내고 실행 기록을 남기지 않는다."""
        async with self.session_factory() as db:
            if target_type == TargetType.DASHBOARD:
                await self.refresher.resolver.get_dashboard(db, target_id, user_id)
            else:
                await self.refresher.resolver.get_query(db, target_id, user_id)
            if schedule_id is not None and schedule_id != MANUAL_SCHEDULE_ID:
                schedule = await db.get(RefreshSchedule, schedule_id)
                if schedule is None or schedule.user_id != user_id:
                    raise NotFoundError("Schedule not found")

        record_id = schedule_id or MANUAL_SCHEDULE_ID
        if record_id != MANUAL_SCHEDULE_ID and not await self._claim(record_id):
            raise ExecutionStateError("Schedule is already running")

        try:
            execution_id = await self.recorder.begin(record_id)
            started = time.monotonic()
            result, error = await self._run_refresh(target_type, target_id, user_id)
            duration = int((time.monotonic() - started) * 1000)
            if result is not None:
                execution = await self.recorder.complete(execution_id, result)
                return AdhocResult(True, execution, duration, result.records_affected)
            execution = await self.recorder.fail(execution_id, error)
            return AdhocResult(False, execution, duration, 0, error=error)
        finally:
            if record_id != MANUAL_SCHEDULE_ID:
                await self._release(record_id)

    # ---- 상태 ----

    async def active_schedule_count(self) -> int:
        async with self.session_factory() as db:
            count = await db.scalar(
                select(func.count(RefreshSchedule.id)).where(
                    RefreshSchedule.is_active.is_(True),
                    RefreshSchedule.schedule_type.in_(POLLED_SCHEDULE_TYPES),
                )
            )
            return count or 0

    async def status(self) -> dict:
        return {
            "running": self.is_running,
            "last_tick_at": self._last_tick_at,
            "active_schedule_count": await self.active_schedule_count(),
            "in_flight": self.in_flight(),
            "tick_interval_minutes": self.tick_interval_minutes,
            "dispatch_active": self.pool.active,
            "dispatch_pending": self.pool.pending,
        }

    def get_jobs(self) -> list[dict]:
        if not self.is_running:
            return []
        jobs = []
        for job in self._scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger),
            })
        return jobs
