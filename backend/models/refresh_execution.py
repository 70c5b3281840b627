"""리프레시 실행 이력 모델."""
import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, DateTime, Enum, Text, JSON, Index

from core.database import Base

# 스케줄 없이 수동으로 실행된 리프레시의 schedule_id
MANUAL_SCHEDULE_ID = "manual"


class ExecutionStatus(str, PyEnum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RefreshExecution(Base):
    """실행 1건. RUNNING 으로 생성되어 COMPLETED/FAILED 로 한 번만 전이한다."""
    __tablename__ = "refresh_executions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # 스케줄 객체 참조 없이 ID만 보관 (삭제된 스케줄의 이력도 유지)
    schedule_id = Column(String(36), nullable=False)
    status = Column(Enum(ExecutionStatus), default=ExecutionStatus.RUNNING, nullable=False)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    duration = Column(Integer, nullable=True)  # ms
    records_affected = Column(Integer, default=0, nullable=False)
    metadata_ = Column("metadata", JSON, default=dict, nullable=True)
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_refresh_executions_schedule", "schedule_id", "started_at"),
        Index("ix_refresh_executions_status", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status != ExecutionStatus.RUNNING

    def __repr__(self):
        return f"<RefreshExecution {self.id} {self.status.value}>"
