"""리프레시 스케줄 CRUD 서비스."""
import logging
from typing import Callable, Optional

from sqlalchemy import select, desc, func
from sqlalchemy.ext.asyncio import AsyncSession

from core import cron_utils
from core.exceptions import ValidationError, NotFoundError
from core.config import get_settings
from core.timezone import now_utc, resolve_zone
from models import (
    RefreshSchedule,
    RefreshExecution,
    ScheduleType,
    TargetType,
    POLLED_SCHEDULE_TYPES,
)
from schemas import ScheduleCreate, ScheduleUpdate, ScheduleResponse, ScheduleDetail, ExecutionResponse
from services.execution_recorder import compute_next_run
from services.target_resolver import TargetResolver, SQLAlchemyTargetResolver

logger = logging.getLogger(__name__)

LIST_EXECUTION_LIMIT = 5
DETAIL_EXECUTION_LIMIT = 20

# 변경 시 next_run_at 재계산이 필요한 필드
_TIMING_FIELDS = ("schedule_type", "interval", "cron_expression", "timezone")


def validate_schedule_fields(
    name: Optional[str],
    schedule_type: ScheduleType,
    interval: Optional[int],
    cron_expression: Optional[str],
    timezone: Optional[str],
) -> None:
    """스케줄 필드 검증. 위반 시 ValidationError."""
    if not name or not name.strip():
        raise ValidationError("Name is required")
    try:
        resolve_zone(timezone)
    except ValueError as e:
        raise ValidationError(str(e)) from e

    if schedule_type == ScheduleType.INTERVAL:
        if interval is None or interval < 1:
            raise ValidationError("Interval must be at least 1 minute for INTERVAL schedules")
    elif schedule_type == ScheduleType.CRON:
        if not cron_expression or not cron_expression.strip():
            raise ValidationError("Cron expression is required for CRON schedules")
        result = cron_utils.validate(cron_expression, timezone)
        if not result.is_valid:
            raise ValidationError(f"Invalid cron expression: {result.error}")


class ScheduleService:
    def __init__(
        self,
        db: AsyncSession,
        resolver: Optional[TargetResolver] = None,
        clock: Callable = now_utc,
    ):
        self.db = db
        self.resolver = resolver or SQLAlchemyTargetResolver()
        self._clock = clock

    async def create(self, user_id: str, data: ScheduleCreate) -> RefreshSchedule:
        timezone = data.timezone or get_settings().default_timezone
        validate_schedule_fields(
            data.name, data.schedule_type, data.interval, data.cron_expression, timezone
        )
        # 대상이 존재하고 본인 소유인지 확인
        await self._resolve_target(data.target_type, data.target_id, user_id)

        schedule = RefreshSchedule(
            name=data.name.strip(),
            description=data.description,
            target_type=data.target_type,
            target_id=data.target_id,
            schedule_type=data.schedule_type,
            interval=data.interval if data.schedule_type == ScheduleType.INTERVAL else None,
            cron_expression=data.cron_expression.strip() if data.schedule_type == ScheduleType.CRON else None,
            timezone=timezone,
            is_active=data.is_active,
            run_count=0,
            error_count=0,
            user_id=user_id,
        )
        if schedule.is_active:
            schedule.next_run_at = compute_next_run(schedule, self._clock())

        self.db.add(schedule)
        await self.db.commit()
        await self.db.refresh(schedule)
        logger.info(f"Created {schedule.schedule_type.value} schedule {schedule.id} for {schedule.target_type.value}:{schedule.target_id}")
        return schedule

    async def get(self, user_id: str, schedule_id: str) -> RefreshSchedule:
        result = await self.db.execute(
            select(RefreshSchedule).where(
                RefreshSchedule.id == schedule_id,
                RefreshSchedule.user_id == user_id,
            )
        )
        schedule = result.scalar_one_or_none()
        if schedule is None:
            raise NotFoundError("Schedule not found")
        return schedule

    async def update(self, user_id: str, schedule_id: str, data: ScheduleUpdate) -> RefreshSchedule:
        schedule = await self.get(user_id, schedule_id)
        changes = data.model_dump(exclude_unset=True)

        merged = {
            "name": changes.get("name", schedule.name),
            "schedule_type": changes.get("schedule_type") or schedule.schedule_type,
            "interval": changes.get("interval", schedule.interval),
            "cron_expression": changes.get("cron_expression", schedule.cron_expression),
            "timezone": changes.get("timezone") or schedule.timezone,
        }
        validate_schedule_fields(**merged)

        timing_changed = any(
            key in changes and changes[key] != getattr(schedule, key) for key in _TIMING_FIELDS
        )
        reactivated = changes.get("is_active") is True and not schedule.is_active

        schedule.name = merged["name"].strip()
        if "description" in changes:
            schedule.description = changes["description"]
        schedule.schedule_type = merged["schedule_type"]
        schedule.interval = merged["interval"] if schedule.schedule_type == ScheduleType.INTERVAL else None
        schedule.cron_expression = (
            merged["cron_expression"].strip() if schedule.schedule_type == ScheduleType.CRON else None
        )
        schedule.timezone = merged["timezone"]
        if changes.get("is_active") is not None:
            schedule.is_active = changes["is_active"]

        if not schedule.is_polled:
            schedule.next_run_at = None
        elif timing_changed or reactivated or schedule.next_run_at is None:
            schedule.next_run_at = compute_next_run(schedule, self._clock())

        await self.db.commit()
        await self.db.refresh(schedule)
        return schedule

    async def delete(self, user_id: str, schedule_id: str) -> None:
        schedule = await self.get(user_id, schedule_id)
        await self.db.delete(schedule)
        await self.db.commit()
        logger.info(f"Deleted schedule {schedule_id}")

    async def list_schedules(self, user_id: str) -> list[ScheduleDetail]:
        """사용자 스케줄 목록 (대상 이름, 최근 실행 5건, 실행 횟수 포함)."""
        result = await self.db.execute(
            select(RefreshSchedule)
            .where(RefreshSchedule.user_id == user_id)
            .order_by(desc(RefreshSchedule.created_at))
        )
        schedules = result.scalars().all()
        if not schedules:
            return []

        counts = await self._execution_counts([s.id for s in schedules])
        names = await self.resolver.target_names(self.db, [(s.target_type, s.target_id) for s in schedules])

        details = []
        for schedule in schedules:
            executions = await self._recent_executions(schedule.id, LIST_EXECUTION_LIMIT)
            details.append(self._detail(
                schedule,
                target_name=names.get((schedule.target_type, schedule.target_id)),
                execution_count=counts.get(schedule.id, 0),
                executions=executions,
            ))
        return details

    async def get_detail(self, user_id: str, schedule_id: str) -> ScheduleDetail:
        schedule = await self.get(user_id, schedule_id)
        names = await self.resolver.target_names(self.db, [(schedule.target_type, schedule.target_id)])
        counts = await self._execution_counts([schedule.id])
        executions = await self._recent_executions(schedule.id, DETAIL_EXECUTION_LIMIT)
        return self._detail(
            schedule,
            target_name=names.get((schedule.target_type, schedule.target_id)),
            execution_count=counts.get(schedule.id, 0),
            executions=executions,
        )

    async def list_executions(
        self, user_id: str, schedule_id: str, limit: int = 20, offset: int = 0
    ) -> list[RefreshExecution]:
        await self.get(user_id, schedule_id)
        return await self._recent_executions(schedule_id, limit, offset)

    async def list_active(self, limit: int = 100) -> list[RefreshSchedule]:
        result = await self.db.execute(
            select(RefreshSchedule)
            .where(
                RefreshSchedule.is_active.is_(True),
                RefreshSchedule.schedule_type.in_(POLLED_SCHEDULE_TYPES),
            )
            .order_by(RefreshSchedule.next_run_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _resolve_target(self, target_type: TargetType, target_id: str, user_id: str) -> None:
        if not target_id:
            raise ValidationError("Target id is required")
        if target_type == TargetType.DASHBOARD:
            await self.resolver.get_dashboard(self.db, target_id, user_id)
        else:
            await self.resolver.get_query(self.db, target_id, user_id)

    async def _recent_executions(
        self, schedule_id: str, limit: int, offset: int = 0
    ) -> list[RefreshExecution]:
        """실행 이력 (started_at 내림차순)."""
        result = await self.db.execute(
            select(RefreshExecution)
            .where(RefreshExecution.schedule_id == schedule_id)
            .order_by(desc(RefreshExecution.started_at))
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _execution_counts(self, schedule_ids: list[str]) -> dict[str, int]:
        result = await self.db.execute(
            select(RefreshExecution.schedule_id, func.count(RefreshExecution.id))
            .where(RefreshExecution.schedule_id.in_(schedule_ids))
            .group_by(RefreshExecution.schedule_id)
        )
        return {schedule_id: count for schedule_id, count in result.all()}

    @staticmethod
    def _detail(
        schedule: RefreshSchedule,
        target_name: Optional[str],
        execution_count: int,
        executions: list[RefreshExecution],
    ) -> ScheduleDetail:
        base = ScheduleResponse.model_validate(schedule).model_dump()
        return ScheduleDetail(
            **base,
            target_name=target_name,
            execution_count=execution_count,
            executions=[ExecutionResponse.from_model(e) for e in executions],
        )
