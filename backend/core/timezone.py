"""시간 유틸리티.

DB에는 항상 naive UTC datetime을 저장한다.
모든 모듈에서 datetime.now()/datetime.utcnow() 대신 now_utc()를 사용할 것.
스케줄별 타임존은 크론 계산 시에만 resolve_zone()으로 해석한다.
"""
from datetime import datetime, timezone, tzinfo
from typing import Optional

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def now_utc() -> datetime:
    """현재 UTC 시간 (naive) 반환."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def resolve_zone(name: Optional[str]) -> tzinfo:
    """IANA 타임존 이름을 tzinfo로 변환. 알 수 없는 이름이면 ValueError."""
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name}") from e


def to_naive_utc(value: datetime) -> datetime:
    """aware datetime을 naive UTC로 변환. naive 값은 UTC로 간주하고 그대로 반환."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def as_aware_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
