"""저장된 쿼리 모델."""
import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Column, String, Text, Integer, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship

from core.database import Base


class QueryStatus(str, PyEnum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class SavedQuery(Base):
    __tablename__ = "queries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    natural_query = Column(Text, nullable=True)  # 사용자가 입력한 자연어 질의
    sql_query = Column(Text, nullable=True)
    status = Column(Enum(QueryStatus), default=QueryStatus.PENDING, nullable=False)
    last_row_count = Column(Integer, nullable=True)

    data_source_id = Column(String(36), ForeignKey("data_sources.id", ondelete="SET NULL"), nullable=True)
    user_id = Column(String(36), nullable=False, index=True)

    data_source = relationship("DataSource", lazy="joined")

    def __repr__(self):
        return f"<SavedQuery {self.id} ({self.status.value})>"
