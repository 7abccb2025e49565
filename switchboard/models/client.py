import uuid

from sqlalchemy import Column, DateTime, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from switchboard.database import Base


class Client(Base):
    __tablename__ = "clients"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    address = Column(Text, nullable=False, unique=True)  # normalized phone number
    display_name = Column(Text)
    client_type = Column(Text, nullable=False, default="unknown")  # unknown, existing, prospect
    conversation_state = Column(Text, nullable=False, default="initial")  # persisted bot state
    last_message = Column(Text)
    last_message_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    conversations = relationship("Conversation", back_populates="client")
