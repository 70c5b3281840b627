# 외부 데이터 소스 (PostgreSQL / MySQL / BigQuery / SQLite) 커넥션 관리
from integrations.datasource.connection import (
    DatabaseConnection,
    SQLAlchemyConnection,
    BigQueryConnection,
    create_connection,
)
from integrations.datasource.manager import ConnectionManager, PoolEntry
from integrations.datasource.dialects import probe_query, table_count_query

__all__ = [
    "DatabaseConnection",
    "SQLAlchemyConnection",
    "BigQueryConnection",
    "create_connection",
    "ConnectionManager",
    "PoolEntry",
    "probe_query",
    "table_count_query",
]
