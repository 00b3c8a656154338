# vendgros/routers/chat.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, status
from sqlalchemy.orm import Session

from vendgros import crud, schemas
from vendgros.database import get_db
from vendgros.errors import MessageDecryptionError
from vendgros.logic import chat as chat_logic
from vendgros.models import User
from vendgros.security.auth import get_current_user

router = APIRouter(prefix="/chat", tags=["chat"])


def _translate_error(exc: Exception) -> None:
    if isinstance(exc, crud.NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, crud.ForbiddenError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, crud.ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, crud.ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, MessageDecryptionError):
        # 키가 바뀌었거나 저장값 손상
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
    raise exc


@router.get("/conversations", response_model=List[schemas.ConversationSummaryOut])
def chat_conversations(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return chat_logic.list_conversations(db, user_id=user.id)


@router.post("/reservations/{reservation_id}", response_model=schemas.ConversationOut)
def chat_open_for_reservation(
    reservation_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """예약 대화방 열기 (없으면 생성)."""
    try:
        return chat_logic.get_or_create_conversation(db, reservation_id=reservation_id, user_id=user.id)
    except Exception as e:
        _translate_error(e)


@router.get("/conversations/{conversation_id}/messages", response_model=List[schemas.MessageOut])
def chat_messages(
    conversation_id: int = Path(..., ge=1),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return chat_logic.list_messages(
            db,
            conversation_id=conversation_id,
            user_id=user.id,
            limit=limit,
            offset=offset,
        )
    except Exception as e:
        _translate_error(e)


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=schemas.MessageOut,
    status_code=status.HTTP_201_CREATED,
)
def chat_send(
    conversation_id: int = Path(..., ge=1),
    body: schemas.MessageIn = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return chat_logic.send_message(
            db,
            conversation_id=conversation_id,
            sender_id=user.id,
            content=body.content,
            attachments=body.attachments,
        )
    except Exception as e:
        _translate_error(e)
