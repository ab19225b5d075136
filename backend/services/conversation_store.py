"""Persistence for assistant conversations and their messages.

Messages are ordered by (created_at, id); that order is the replay order.
"""
from typing import Optional

from sqlalchemy.orm import Session

from models import AiConversation, AiMessage, utcnow


def create_conversation(db: Session, user_id: str, title: Optional[str], page_route: Optional[str]) -> AiConversation:
    conversation = AiConversation(user_id=user_id, title=title or None, page_route=page_route or None)
    db.add(conversation)
    db.commit()
    db.refresh(conversation)
    return conversation


def get_conversation(db: Session, user_id: str, conversation_id: int) -> Optional[AiConversation]:
    return (
        db.query(AiConversation)
        .filter(AiConversation.id == conversation_id, AiConversation.user_id == user_id)
        .first()
    )


def list_conversations(db: Session, user_id: str, limit: int = 20) -> list[AiConversation]:
    return (
        db.query(AiConversation)
        .filter(AiConversation.user_id == user_id)
        .order_by(AiConversation.updated_at.desc(), AiConversation.id.desc())
        .limit(limit)
        .all()
    )


def touch_conversation(db: Session, conversation: AiConversation) -> None:
    conversation.updated_at = utcnow()
    db.commit()


def rename_conversation(db: Session, user_id: str, conversation_id: int, title: str) -> Optional[AiConversation]:
    conversation = get_conversation(db, user_id, conversation_id)
    if not conversation:
        return None
    conversation.title = title.strip()
    conversation.updated_at = utcnow()
    db.commit()
    db.refresh(conversation)
    return conversation


def add_message(
    db: Session,
    conversation_id: int,
    role: str,
    content: str,
    tool_name: Optional[str] = None,
    tool_payload=None,
    tool_call_id: Optional[str] = None,
) -> AiMessage:
    message = AiMessage(
        conversation_id=conversation_id,
        role=role,
        content=content or "",
        tool_name=tool_name,
        tool_payload=tool_payload,
        tool_call_id=tool_call_id,
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    return message


def get_messages(db: Session, conversation_id: int) -> list[AiMessage]:
    return (
        db.query(AiMessage)
        .filter(AiMessage.conversation_id == conversation_id)
        .order_by(AiMessage.created_at.asc(), AiMessage.id.asc())
        .all()
    )


def get_recent_messages(db: Session, conversation_id: int, limit: int = 20) -> list[AiMessage]:
    """Latest ``limit`` messages, returned oldest first."""
    rows = (
        db.query(AiMessage)
        .filter(AiMessage.conversation_id == conversation_id)
        .order_by(AiMessage.created_at.desc(), AiMessage.id.desc())
        .limit(limit)
        .all()
    )
    return list(reversed(rows))
