from . import refresh_scheduler, refresh_execute, refresh_schedules, cron_tools, cron_status, datasources, health

__all__ = [
    "refresh_scheduler",
    "refresh_execute",
    "refresh_schedules",
    "cron_tools",
    "cron_status",
    "datasources",
    "health",
]
