"""
Notifications table: every toast the agent raised (event received, save
succeeded, request failed). Lets an operator see what the UI would have shown.
"""

from sqlalchemy import Column, Integer, String, DateTime, Text
from fleetsync.database import Base


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    level = Column(String(20), nullable=False, index=True)   # info | success | destructive
    title = Column(String(200), nullable=False)
    description = Column(Text)
    duration_ms = Column(Integer)
    is_dismissed = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    dismissed_at = Column(DateTime(timezone=True))

    def __repr__(self):
        return f"<Notification {self.id} level={self.level} title={self.title!r}>"
