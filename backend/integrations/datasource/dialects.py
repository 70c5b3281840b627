"""백엔드 방언별 SQL 템플릿.

등록되지 않은 방언은 범용 SELECT 1 로 대체한다.
"""
from typing import Optional, Union

from models.data_source import DataSourceType

GENERIC_PROBE = "SELECT 1"
GENERIC_TABLE_COUNT = "SELECT 1 AS count"

_PROBE_QUERIES = {
    DataSourceType.POSTGRESQL: "SELECT 1",
    DataSourceType.MYSQL: "SELECT 1",
    DataSourceType.BIGQUERY: "SELECT 1",
    DataSourceType.SQLITE: "SELECT 1",
}

_TABLE_COUNT_QUERIES = {
    DataSourceType.POSTGRESQL: (
        "SELECT COUNT(*) AS count FROM information_schema.tables "
        "WHERE table_schema = 'public'"
    ),
    DataSourceType.MYSQL: (
        "SELECT COUNT(*) AS count FROM information_schema.tables "
        "WHERE table_schema = DATABASE()"
    ),
    DataSourceType.BIGQUERY: "SELECT COUNT(*) AS count FROM INFORMATION_SCHEMA.TABLES",
    DataSourceType.SQLITE: "SELECT COUNT(*) AS count FROM sqlite_master WHERE type = 'table'",
}

def resolve_dialect(backend_type: Union[DataSourceType, str, None]) -> Optional[DataSourceType]:
    """문자열/enum 을 DataSourceType 으로 변환. 알 수 없으면 None."""
    if isinstance(backend_type, DataSourceType):
        return backend_type
    try:
        return DataSourceType(str(backend_type).upper())
    except ValueError:
        return None


def probe_query(backend_type) -> str:
    return _PROBE_QUERIES.get(resolve_dialect(backend_type), GENERIC_PROBE)


def table_count_query(backend_type) -> str:
    return _TABLE_COUNT_QUERIES.get(resolve_dialect(backend_type), GENERIC_TABLE_COUNT)
