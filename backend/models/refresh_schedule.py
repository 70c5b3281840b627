"""리프레시 스케줄 모델."""
import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Column, String, Text, Integer, DateTime, Enum, Boolean, Index

from core.database import Base


class TargetType(str, PyEnum):
    """리프레시 대상 유형."""
    DASHBOARD = "DASHBOARD"
    QUERY = "QUERY"


class ScheduleType(str, PyEnum):
    """스케줄 유형.

    MANUAL/REALTIME 은 폴링 루프의 대상이 아니며 next_run_at 을 갖지 않는다.
    """
    MANUAL = "MANUAL"
    INTERVAL = "INTERVAL"  # interval 분마다
    CRON = "CRON"  # cron_expression 기준
    REALTIME = "REALTIME"  # 이벤트 기반 (폴링 대상 아님)


POLLED_SCHEDULE_TYPES = (ScheduleType.INTERVAL, ScheduleType.CRON)


def _new_id() -> str:
    return str(uuid.uuid4())


class RefreshSchedule(Base):
    __tablename__ = "refresh_schedules"

    id = Column(String(36), primary_key=True, default=_new_id)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    target_type = Column(Enum(TargetType), nullable=False)
    target_id = Column(String(36), nullable=False)

    schedule_type = Column(Enum(ScheduleType), nullable=False)
    interval = Column(Integer, nullable=True)  # 분
    cron_expression = Column(String(100), nullable=True)
    timezone = Column(String(64), default="UTC", nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    next_run_at = Column(DateTime, nullable=True)
    last_run_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    run_count = Column(Integer, default=0, nullable=False)
    error_count = Column(Integer, default=0, nullable=False)

    user_id = Column(String(36), nullable=False)

    __table_args__ = (
        Index("ix_refresh_schedules_due", "is_active", "schedule_type", "next_run_at"),
        Index("ix_refresh_schedules_user", "user_id"),
    )

    @property
    def is_polled(self) -> bool:
        return self.schedule_type in POLLED_SCHEDULE_TYPES

    def __repr__(self):
        return f"<RefreshSchedule {self.id} {self.schedule_type.value} -> {self.target_type.value}:{self.target_id}>"
