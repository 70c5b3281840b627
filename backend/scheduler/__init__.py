from scheduler.dispatch_pool import DispatchPool
from scheduler.scheduler import RefreshScheduler, TickSummary, TickResult, AdhocResult

__all__ = [
    "DispatchPool",
    "RefreshScheduler",
    "TickSummary",
    "TickResult",
    "AdhocResult",
]
