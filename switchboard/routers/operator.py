from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from switchboard.database import get_db
from switchboard.errors import SwitchboardError, TransportSendFailed, TransportUnavailable
from switchboard.runtime import Runtime, get_runtime
from switchboard.schemas.operator import (
    ConversationResponse,
    MarkReadResponse,
    MessageOut,
    OperatorActionRequest,
    OperatorMessageRequest,
)
from switchboard.services.message_service import list_messages
from switchboard.services.operator_service import OperatorActionError

router = APIRouter(prefix="/conversations", tags=["conversations"])

_STATUS_BY_CODE = {"not_found": 404, "invalid_state": 409, "not_assigned": 403}


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, OperatorActionError):
        return HTTPException(status_code=_STATUS_BY_CODE.get(e.code, 400), detail=e.message)
    if isinstance(e, (TransportUnavailable, TransportSendFailed)):
        return HTTPException(status_code=503, detail=e.message)
    return HTTPException(status_code=500, detail=str(e))


def _response(conversation, message: str) -> ConversationResponse:
    return ConversationResponse(
        success=True,
        conversation_id=conversation.id,
        status=conversation.status,
        operator_ref=conversation.operator_ref,
        message=message,
    )


@router.post("/{conversation_id}/take", response_model=ConversationResponse)
async def take_conversation(
    conversation_id: UUID,
    request: OperatorActionRequest,
    db: Session = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    try:
        conversation = await runtime.operators.take(db, conversation_id, request.operator_ref)
    except OperatorActionError as e:
        raise _http_error(e)
    return _response(conversation, "Conversation taken")


@router.post("/{conversation_id}/release", response_model=ConversationResponse)
async def release_conversation(
    conversation_id: UUID,
    request: OperatorActionRequest,
    db: Session = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    try:
        conversation = await runtime.operators.release(db, conversation_id, request.operator_ref)
    except OperatorActionError as e:
        raise _http_error(e)
    return _response(conversation, "Conversation returned to bot")


@router.post("/{conversation_id}/close", response_model=ConversationResponse)
async def close_conversation(
    conversation_id: UUID,
    request: OperatorActionRequest,
    db: Session = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    try:
        conversation = await runtime.operators.close(db, conversation_id, request.operator_ref)
    except OperatorActionError as e:
        raise _http_error(e)
    return _response(conversation, "Conversation closed")


@router.post("/{conversation_id}/read", response_model=MarkReadResponse)
def mark_conversation_read(
    conversation_id: UUID,
    db: Session = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    try:
        updated = runtime.operators.mark_read(db, conversation_id)
    except OperatorActionError as e:
        raise _http_error(e)
    return MarkReadResponse(success=True, conversation_id=conversation_id, updated=updated)


@router.post("/{conversation_id}/messages", response_model=MessageOut)
async def send_operator_message(
    conversation_id: UUID,
    request: OperatorMessageRequest,
    db: Session = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    try:
        message = await runtime.operators.send(db, conversation_id, request.operator_ref, request.content)
    except (OperatorActionError, SwitchboardError) as e:
        raise _http_error(e)
    return MessageOut.model_validate(message)


@router.get("/{conversation_id}/messages", response_model=list[MessageOut])
def get_conversation_messages(conversation_id: UUID, limit: int | None = None, db: Session = Depends(get_db)):
    return [MessageOut.model_validate(message) for message in list_messages(db, conversation_id, limit=limit)]
