from sqlalchemy import Column, DateTime, Text

from switchboard.database import Base


class ProcessedEvent(Base):
    __tablename__ = "processed_events"

    event_id = Column(Text, primary_key=True)
    received_at = Column(DateTime(timezone=True), nullable=False, index=True)
