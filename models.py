from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

# Declarative base for the SQLAlchemy models
Base = declarative_base()


class OrderSync(Base):
    """Association between a Shopify order and its Shipsy consignment."""
    __tablename__ = 'order_syncs'
    order_id = Column(String, primary_key=True)
    consignment_id = Column(String, index=True)
    state = Column(String, nullable=False, default="unsynced")
    last_status = Column(String)
    note_written = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=1)
    synced_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())


class SyncLog(Base):
    """Append-only record of every sync, status update and error."""
    __tablename__ = 'sync_logs'
    id = Column(Integer, primary_key=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    type = Column(String, nullable=False, index=True)
    status = Column(String, index=True)
    order_id = Column(String, index=True)
    consignment_id = Column(String)
    synced = Column(Integer, default=0)
    failed = Column(Integer, default=0)
    total = Column(Integer, default=0)
    old_status = Column(String)
    new_status = Column(String)
    message = Column(Text, default="")
    error = Column(Text)
    severity = Column(String)
    duration = Column(Integer, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "type": self.type,
            "status": self.status,
            "order_id": self.order_id,
            "consignment_id": self.consignment_id,
            "synced": self.synced,
            "failed": self.failed,
            "total": self.total,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "message": self.message,
            "error": self.error,
            "severity": self.severity,
            "duration": self.duration,
        }
