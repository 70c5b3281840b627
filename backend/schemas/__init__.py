from .refresh import (
    ScheduleCreate,
    ScheduleUpdate,
    ScheduleResponse,
    ScheduleDetail,
    ExecutionResponse,
    ExecuteRequest,
    ExecuteResponse,
    TickResultItem,
    SchedulerTickResponse,
    CronValidateRequest,
    CronValidateResponse,
    CronPreset,
    HumanCronRequest,
    HumanCronResponse,
    CronStatusResponse,
    DataSourceTestResponse,
)

__all__ = [
    "ScheduleCreate",
    "ScheduleUpdate",
    "ScheduleResponse",
    "ScheduleDetail",
    "ExecutionResponse",
    "ExecuteRequest",
    "ExecuteResponse",
    "TickResultItem",
    "SchedulerTickResponse",
    "CronValidateRequest",
    "CronValidateResponse",
    "CronPreset",
    "HumanCronRequest",
    "HumanCronResponse",
    "CronStatusResponse",
    "DataSourceTestResponse",
]
