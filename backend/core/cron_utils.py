"""크론 표현식 유틸리티.

표현식 해석은 APScheduler CronTrigger(crontab 5필드)에 위임한다.
계산 결과는 항상 naive UTC datetime 이며 기준 시각보다 엄격히 이후이다.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.triggers.cron import CronTrigger

from core.timezone import now_utc, resolve_zone, to_naive_utc, as_aware_utc

logger = logging.getLogger(__name__)

_DAY_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]
_NUMERIC_DOW = re.compile(r"^(\*|\d+)(?:-(\d+))?(?:/(\d+))?$")

PRESETS = [
    ("*/5 * * * *", "Every 5 minutes"),
    ("*/15 * * * *", "Every 15 minutes"),
    ("*/30 * * * *", "Every 30 minutes"),
    ("0 * * * *", "Every hour"),
    ("0 */2 * * *", "Every 2 hours"),
    ("0 */6 * * *", "Every 6 hours"),
    ("0 0 * * *", "Daily at midnight"),
    ("0 6 * * *", "Daily at 6:00 AM"),
    ("0 12 * * *", "Daily at noon"),
    ("0 18 * * *", "Daily at 6:00 PM"),
    ("0 0 * * 1", "Weekly on Monday"),
    ("0 0 1 * *", "Monthly on the 1st"),
]

_HUMAN_PATTERNS = {
    "every minute": "* * * * *",
    "every 5 minutes": "*/5 * * * *",
    "every 10 minutes": "*/10 * * * *",
    "every 15 minutes": "*/15 * * * *",
    "every 30 minutes": "*/30 * * * *",
    "every hour": "0 * * * *",
    "every 2 hours": "0 */2 * * *",
    "every 6 hours": "0 */6 * * *",
    "every 12 hours": "0 */12 * * *",
    "daily": "0 0 * * *",
    "daily at midnight": "0 0 * * *",
    "daily at noon": "0 12 * * *",
    "weekly": "0 0 * * 0",
    "monthly": "0 0 1 * *",
    "yearly": "0 0 1 1 *",
}


@dataclass
class CronValidationResult:
    is_valid: bool
    error: Optional[str] = None
    next_runs: list[datetime] = field(default_factory=list)


def _normalize_day_of_week(value: str) -> str:
    """crontab 요일 번호(0/7=일요일)를 APScheduler 요일 이름으로 변환.

    APScheduler는 숫자 요일을 월요일=0 으로 해석하므로 숫자는 전부 이름으로 펼친다.
    """
    if value == "*":
        return value
    names: list[str] = []
    for part in value.split(","):
        match = _NUMERIC_DOW.match(part)
        if not match:
            names.append(part)  # 이미 이름(mon-fri 등)인 경우
            continue
        start, end, step = match.groups()
        if start == "*":
            first, last = 0, 6
        else:
            first = int(start)
            last = int(end) if end is not None else (6 if step else first)
        if first > 7 or last > 7:
            raise ValueError(f"Invalid day of week: {part}")
        for day in range(first, last + 1, int(step) if step else 1):
            name = _DAY_NAMES[day % 7]
            if name not in names:
                names.append(name)
    return ",".join(names)


def build_trigger(expression: str, timezone_name: Optional[str] = None) -> CronTrigger:
    """crontab 표현식으로 CronTrigger 생성. 잘못된 표현식이면 ValueError."""
    if not expression or not isinstance(expression, str):
        raise ValueError("Cron expression is required and must be a string")
    parts = expression.split()
    if len(parts) != 5:
        raise ValueError(f"Wrong number of fields; got {len(parts)}, expected 5")
    minute, hour, day, month, day_of_week = parts
    return CronTrigger(
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=_normalize_day_of_week(day_of_week),
        timezone=resolve_zone(timezone_name),
    )


def next_run(
    expression: str,
    timezone_name: Optional[str] = None,
    from_time: Optional[datetime] = None,
) -> Optional[datetime]:
    """from_time(naive UTC) 이후 첫 실행 시각. 더 이상 실행되지 않으면 None."""
    trigger = build_trigger(expression, timezone_name)
    base = as_aware_utc(from_time or now_utc()) + timedelta(seconds=1)
    fire_time = trigger.get_next_fire_time(None, base)
    return to_naive_utc(fire_time) if fire_time else None


def next_runs(
    expression: str,
    count: int = 5,
    timezone_name: Optional[str] = None,
    from_time: Optional[datetime] = None,
) -> list[datetime]:
    runs: list[datetime] = []
    current = from_time or now_utc()
    for _ in range(count):
        nxt = next_run(expression, timezone_name, current)
        if nxt is None:
            break
        runs.append(nxt)
        current = nxt
    return runs


def validate(expression: str, timezone_name: Optional[str] = None) -> CronValidationResult:
    try:
        return CronValidationResult(
            is_valid=True,
            next_runs=next_runs(expression, 3, timezone_name),
        )
    except (ValueError, TypeError) as e:
        return CronValidationResult(is_valid=False, error=str(e))


def describe(expression: str) -> str:
    """크론 표현식을 사람이 읽을 수 있는 설명으로 변환."""
    parts = (expression or "").strip().split()
    if len(parts) != 5:
        return "Invalid cron expression"

    minute, hour, day, month, day_of_week = parts
    normalized = " ".join(parts)
    known = {
        "* * * * *": "Every minute",
        "0 * * * *": "Every hour",
        "0 0 * * *": "Daily at midnight",
        "0 12 * * *": "Daily at noon",
        "0 0 * * 0": "Weekly on Sunday",
        "0 0 1 * *": "Monthly on the 1st",
    }
    if normalized in known:
        return known[normalized]

    if minute.startswith("*/"):
        return f"Every {minute[2:]} minutes"
    if hour.startswith("*/"):
        return f"Every {hour[2:]} hours"

    rest_wild = day == "*" and month == "*" and day_of_week == "*"
    if rest_wild and minute.isdigit() and hour.isdigit():
        return f"Daily at {int(hour):02d}:{int(minute):02d}"
    if rest_wild and minute.isdigit() and hour == "*":
        return f"Hourly at :{int(minute):02d}"

    return f"Custom: {normalized}"


def human_to_cron(text: str) -> Optional[str]:
    """'daily at 2:30 pm', 'every hour at :15' 같은 문구를 크론 표현식으로 변환."""
    lower = (text or "").lower().strip()

    time_match = re.match(r"daily at (\d{1,2}):(\d{2})\s*(am|pm)?$", lower)
    if time_match:
        hour = int(time_match.group(1))
        minute = int(time_match.group(2))
        period = time_match.group(3)
        if period == "pm" and hour != 12:
            hour += 12
        elif period == "am" and hour == 12:
            hour = 0
        if hour > 23 or minute > 59:
            return None
        return f"{minute} {hour} * * *"

    hourly_match = re.match(r"every hour at :(\d{1,2})$", lower)
    if hourly_match:
        minute = int(hourly_match.group(1))
        return f"{minute} * * * *" if minute < 60 else None

    return _HUMAN_PATTERNS.get(lower)


def presets(timezone_name: Optional[str] = None) -> list[dict]:
    result = []
    for expression, description in PRESETS:
        result.append({
            "expression": expression,
            "description": description,
            "next_run": next_run(expression, timezone_name),
        })
    return result
