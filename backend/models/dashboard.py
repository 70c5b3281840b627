from datetime import datetime
import uuid

from sqlalchemy import Column, String, Text, DateTime

from core.database import Base


class Dashboard(Base):
    __tablename__ = "dashboards"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    user_id = Column(String(36), nullable=False, index=True)

    def __repr__(self):
        return f"<Dashboard {self.name}>"
