# vendgros/logic/chat.py
# 예약 단위 1:1 채팅 (메시지 본문은 AES-GCM 으로 암호화해서 저장)

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from vendgros import crud
from vendgros.core.time_policy import now_utc
from vendgros.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from vendgros.models import Conversation, Message
from vendgros.policy.runtime import get_policy
from vendgros.security.encryption import (
    decrypt_attachments,
    decrypt_message,
    encrypt_attachments,
    encrypt_message,
)

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 5000


@dataclass
class MessageView:
    id: int
    conversation_id: int
    sender_id: int
    content: str
    attachments: List[str]
    is_read: bool
    created_at: Optional[datetime]


def _require_participant(conv: Conversation, user_id: int) -> None:
    if user_id not in (conv.buyer_id, conv.seller_id):
        raise ForbiddenError("Not a participant of this conversation")


def get_conversation(db: Session, *, conversation_id: int, user_id: int) -> Conversation:
    conv = db.get(Conversation, conversation_id)
    if not conv:
        raise NotFoundError("Conversation not found")
    _require_participant(conv, user_id)
    return conv


def get_or_create_conversation(db: Session, *, reservation_id: int, user_id: int) -> Conversation:
    resv = crud.get_reservation_for_party(db, reservation_id, user_id)

    allowed = get_policy().chat.allowed_statuses
    if resv.status.value not in allowed:
        raise ConflictError(f"Chat is not available for reservations in status {resv.status.value}")

    conv = db.query(Conversation).filter(Conversation.reservation_id == reservation_id).first()
    if conv:
        return conv

    conv = Conversation(
        listing_id=resv.listing_id,
        buyer_id=resv.buyer_id,
        seller_id=resv.listing.seller_id,
        reservation_id=resv.id,
        created_at=now_utc(),
    )
    db.add(conv)
    db.commit()
    db.refresh(conv)
    logger.info("conversation %s opened for reservation %s", conv.id, reservation_id)
    return conv


def _key_id(conv: Conversation) -> str:
    return str(conv.id)


def send_message(
    db: Session,
    *,
    conversation_id: int,
    sender_id: int,
    content: str,
    attachments: Optional[Sequence[str]] = None,
) -> MessageView:
    conv = get_conversation(db, conversation_id=conversation_id, user_id=sender_id)

    text = (content or "").strip()
    if not text and not attachments:
        raise ValidationError("message is empty")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"message too long (max {MAX_MESSAGE_LENGTH})")

    now = now_utc()
    msg = Message(
        conversation_id=conv.id,
        sender_id=sender_id,
        content=encrypt_message(text, _key_id(conv)),
        is_encrypted=True,
        attachments=encrypt_attachments(list(attachments), _key_id(conv)) if attachments else None,
        created_at=now,
    )
    db.add(msg)

    conv.last_message_at = now
    conv.last_message_sender_id = sender_id
    # 보낸 사람은 자기 메시지까지 읽은 것으로
    if sender_id == conv.buyer_id:
        conv.buyer_last_read_at = now
    else:
        conv.seller_last_read_at = now
    db.add(conv)

    db.commit()
    db.refresh(msg)
    return _to_view(conv, msg)


def _to_view(conv: Conversation, msg: Message) -> MessageView:
    if msg.is_encrypted:
        content = decrypt_message(msg.content, _key_id(conv))
        attachments = decrypt_attachments(msg.attachments or [], _key_id(conv))
    else:
        content = msg.content
        attachments = list(msg.attachments or [])
    return MessageView(
        id=msg.id,
        conversation_id=msg.conversation_id,
        sender_id=msg.sender_id,
        content=content,
        attachments=attachments,
        is_read=msg.is_read,
        created_at=msg.created_at,
    )


def list_messages(
    db: Session,
    *,
    conversation_id: int,
    user_id: int,
    limit: int = 50,
    offset: int = 0,
) -> List[MessageView]:
    """메시지를 오래된 순으로 반환하고, 상대방 메시지는 읽음 처리."""
    conv = get_conversation(db, conversation_id=conversation_id, user_id=user_id)

    rows = (
        db.query(Message)
        .filter(Message.conversation_id == conv.id)
        .order_by(Message.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    rows.reverse()

    mark_read(db, conversation=conv, user_id=user_id)
    return [_to_view(conv, m) for m in rows]


def mark_read(db: Session, *, conversation: Conversation, user_id: int) -> int:
    now = now_utc()
    updated = (
        db.query(Message)
        .filter(
            Message.conversation_id == conversation.id,
            Message.sender_id != user_id,
            Message.is_read.is_(False),
        )
        .update({Message.is_read: True, Message.read_at: now}, synchronize_session="fetch")
    )
    if user_id == conversation.buyer_id:
        conversation.buyer_last_read_at = now
    else:
        conversation.seller_last_read_at = now
    db.add(conversation)
    db.commit()
    return int(updated or 0)


def unread_count(db: Session, *, conversation: Conversation, user_id: int) -> int:
    return int(
        db.query(func.count(Message.id))
        .filter(
            Message.conversation_id == conversation.id,
            Message.sender_id != user_id,
            Message.is_read.is_(False),
        )
        .scalar()
        or 0
    )


def list_conversations(db: Session, *, user_id: int) -> List[dict]:
    convs = (
        db.query(Conversation)
        .filter(or_(Conversation.buyer_id == user_id, Conversation.seller_id == user_id))
        .order_by(Conversation.last_message_at.desc(), Conversation.id.desc())
        .all()
    )
    return [
        {
            "id": c.id,
            "reservation_id": c.reservation_id,
            "listing_id": c.listing_id,
            "other_user_id": c.seller_id if c.buyer_id == user_id else c.buyer_id,
            "last_message_at": c.last_message_at,
            "unread_count": unread_count(db, conversation=c, user_id=user_id),
        }
        for c in convs
    ]
