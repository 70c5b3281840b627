# Integrations - 외부 데이터 소스 연동 모듈
from integrations.datasource import ConnectionManager, DatabaseConnection, create_connection

__all__ = [
    "ConnectionManager",
    "DatabaseConnection",
    "create_connection",
]
