import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, Uuid, text
from sqlalchemy.orm import relationship

from switchboard.database import Base

_OPEN_STATUS_CLAUSE = text("status IN ('active', 'waiting')")


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        # At most one open conversation per client.
        Index(
            "uq_conversations_open_client",
            "client_id",
            unique=True,
            postgresql_where=_OPEN_STATUS_CLAUSE,
            sqlite_where=_OPEN_STATUS_CLAUSE,
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=False)
    status = Column(Text, nullable=False, default="active")  # active, waiting, closed
    operator_ref = Column(Text)
    started_at = Column(DateTime(timezone=True), nullable=False)
    last_message_at = Column(DateTime(timezone=True))
    ended_at = Column(DateTime(timezone=True))
    closed_by_ref = Column(Text)
    close_reason = Column(Text)  # inactivity, operator, healed
    handoff_requested_at = Column(DateTime(timezone=True))

    client = relationship("Client", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation", order_by="Message.timestamp")
