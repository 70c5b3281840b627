from .target_refresher import TargetRefresher, RefreshResult
from .target_resolver import TargetResolver, SQLAlchemyTargetResolver
from .execution_recorder import ExecutionRecorder, compute_next_run
from .schedule_service import ScheduleService, validate_schedule_fields

__all__ = [
    "TargetRefresher",
    "RefreshResult",
    "TargetResolver",
    "SQLAlchemyTargetResolver",
    "ExecutionRecorder",
    "compute_next_run",
    "ScheduleService",
    "validate_schedule_fields",
]
