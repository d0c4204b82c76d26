"""
Received real-time event log table.
Stores every data-update event the agent receives (socket or HTTP ingest),
together with how many cache keys it invalidated.
Used for audit trail, debugging, and event replay.
"""

from sqlalchemy import Column, Integer, String, DateTime, Text
from fleetsync.database import Base


class SyncEvent(Base):
    __tablename__ = "sync_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(50), nullable=False, index=True)
    action = Column(String(20), nullable=False, index=True)
    entity_id = Column(Integer)
    vehicle_id = Column(Integer)
    source = Column(String(20), nullable=False)          # socket | http
    invalidated_keys = Column(Integer, default=0, nullable=False)
    server_timestamp = Column(DateTime(timezone=True))
    raw_payload = Column(Text)
    received_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return f"<SyncEvent {self.id} {self.entity_type}.{self.action} id={self.entity_id}>"
