from .refresh_schedule import RefreshSchedule, TargetType, ScheduleType, POLLED_SCHEDULE_TYPES
from .refresh_execution import RefreshExecution, ExecutionStatus, MANUAL_SCHEDULE_ID
from .data_source import DataSource, DataSourceType
from .dashboard import Dashboard
from .saved_query import SavedQuery, QueryStatus

__all__ = [
    "RefreshSchedule",
    "TargetType",
    "ScheduleType",
    "POLLED_SCHEDULE_TYPES",
    "RefreshExecution",
    "ExecutionStatus",
    "MANUAL_SCHEDULE_ID",
    "DataSource",
    "DataSourceType",
    "Dashboard",
    "SavedQuery",
    "QueryStatus",
]
