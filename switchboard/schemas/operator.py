from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class OperatorActionRequest(BaseModel):
    operator_ref: str


class OperatorMessageRequest(BaseModel):
    operator_ref: str
    content: str = Field(min_length=1)


class ConversationResponse(BaseModel):
    success: bool
    conversation_id: UUID
    status: str
    operator_ref: Optional[str] = None
    message: Optional[str] = None


class MessageOut(BaseModel):
    id: UUID
    conversation_id: UUID
    sender_kind: str
    sender_ref: Optional[str] = None
    content: str
    timestamp: datetime
    is_read: bool

    model_config = {"from_attributes": True}


class MarkReadResponse(BaseModel):
    success: bool
    conversation_id: UUID
    updated: int
