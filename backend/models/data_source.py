"""외부 데이터 소스 모델 (CRUD 는 범위 밖, 엔진은 조회만 한다)."""
import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Column, String, Text, DateTime, Enum

from core.database import Base


class DataSourceType(str, PyEnum):
    POSTGRESQL = "POSTGRESQL"
    MYSQL = "MYSQL"
    BIGQUERY = "BIGQUERY"
    SQLITE = "SQLITE"


class DataSource(Base):
    __tablename__ = "data_sources"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    name = Column(String(200), nullable=False)
    type = Column(Enum(DataSourceType), nullable=False)
    connection_string = Column(Text, nullable=False)
    user_id = Column(String(36), nullable=False, index=True)

    def __repr__(self):
        return f"<DataSource {self.name} ({self.type.value})>"
