from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from models import TargetType, ScheduleType, ExecutionStatus, RefreshExecution


class CamelModel(BaseModel):
    """JSON 키를 camelCase 로 주고받는 기본 모델."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class ScheduleCreate(CamelModel):
    name: str
    description: Optional[str] = None
    target_type: TargetType
    target_id: str
    schedule_type: ScheduleType
    interval: Optional[int] = None  # 분
    cron_expression: Optional[str] = None
    timezone: Optional[str] = None  # 미지정 시 default_timezone
    is_active: bool = True


class ScheduleUpdate(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    schedule_type: Optional[ScheduleType] = None
    interval: Optional[int] = None
    cron_expression: Optional[str] = None
    timezone: Optional[str] = None
    is_active: Optional[bool] = None


class ExecutionResponse(CamelModel):
    id: str
    schedule_id: str
    status: ExecutionStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration: Optional[int] = None  # ms
    records_affected: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    @classmethod
    def from_model(cls, execution: RefreshExecution) -> "ExecutionResponse":
        # ORM 의 metadata_ 컬럼은 declarative Base.metadata 와 이름이 겹쳐 직접 매핑
        return cls(
            id=execution.id,
            schedule_id=execution.schedule_id,
            status=execution.status,
            started_at=execution.started_at,
            completed_at=execution.completed_at,
            duration=execution.duration,
            records_affected=execution.records_affected or 0,
            metadata=execution.metadata_ or {},
            error_message=execution.error_message,
        )


class ScheduleResponse(CamelModel):
    id: str
    created_at: datetime
    updated_at: datetime
    name: str
    description: Optional[str] = None
    target_type: TargetType
    target_id: str
    schedule_type: ScheduleType
    interval: Optional[int] = None
    cron_expression: Optional[str] = None
    timezone: str
    is_active: bool
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    run_count: int
    error_count: int
    user_id: str

    class Config:
        from_attributes = True


class ScheduleDetail(ScheduleResponse):
    target_name: Optional[str] = None
    execution_count: int = 0
    executions: List[ExecutionResponse] = Field(default_factory=list)


class ExecuteRequest(CamelModel):
    target_type: TargetType
    target_id: str
    schedule_id: Optional[str] = None


class ExecuteResponse(CamelModel):
    success: bool
    execution: ExecutionResponse
    duration: int  # ms
    records_affected: int


class TickResultItem(CamelModel):
    schedule_id: str
    status: ExecutionStatus
    duration: Optional[int] = None
    records_affected: Optional[int] = None
    error: Optional[str] = None


class SchedulerTickResponse(CamelModel):
    success: bool
    schedules_processed: int
    results: List[TickResultItem]
    skipped: List[str] = Field(default_factory=list)


class CronValidateRequest(CamelModel):
    expression: str
    timezone: Optional[str] = None


class CronValidateResponse(CamelModel):
    is_valid: bool
    error: Optional[str] = None
    next_runs: List[datetime] = Field(default_factory=list)
    description: Optional[str] = None


class CronPreset(CamelModel):
    expression: str
    description: str
    next_run: Optional[datetime] = None


class HumanCronRequest(CamelModel):
    text: str


class HumanCronResponse(CamelModel):
    text: str
    expression: Optional[str] = None
    description: Optional[str] = None


class CronStatusResponse(CamelModel):
    running: bool
    last_tick_at: Optional[datetime] = None
    active_schedule_count: int
    in_flight: List[str] = Field(default_factory=list)
    tick_interval_minutes: int
    dispatch_active: int = 0
    dispatch_pending: int = 0
    active_schedules: List[ScheduleResponse] = Field(default_factory=list)
    message: Optional[str] = None


class DataSourceTestResponse(CamelModel):
    data_source_id: str
    connected: bool
    table_count: Optional[int] = None
    message: str
