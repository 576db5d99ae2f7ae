from datetime import datetime

from sqlalchemy.orm import Session

from . import models
from .models import MessageType
from .realtime import queue_push


def find_direct(db: Session, user_a: int, user_b: int):
    """Existing conversation between exactly these two users with no project or order attached."""
    candidates = db.query(models.Conversation).join(models.ConversationParticipant).filter(
        models.ConversationParticipant.user_id == user_a,
        models.Conversation.project_id.is_(None),
        models.Conversation.service_order_id.is_(None),
    ).all()
    for conversation in candidates:
        ids = {p.user_id for p in conversation.participants}
        if ids == {user_a, user_b}:
            return conversation
    return None


def open_conversation(db: Session, user_ids, project_id=None, service_order_id=None) -> models.Conversation:
    query = db.query(models.Conversation)
    if project_id:
        existing = query.filter(models.Conversation.project_id == project_id).first()
    elif service_order_id:
        existing = query.filter(models.Conversation.service_order_id == service_order_id).first()
    else:
        existing = find_direct(db, *user_ids)
    if existing:
        return existing

    now = datetime.now()
    conversation = models.Conversation(
        project_id=project_id, service_order_id=service_order_id, created_at=now, updated_at=now,
    )
    conversation.participants = [models.ConversationParticipant(user_id=uid) for uid in dict.fromkeys(user_ids)]
    db.add(conversation)
    db.flush()
    return conversation


def serialize_message(message: models.Message) -> dict:
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "sender": {
            "id": message.sender.id,
            "username": message.sender.username,
            "first_name": message.sender.first_name,
            "last_name": message.sender.last_name,
            "rating": message.sender.rating,
            "review_count": message.sender.review_count,
        },
        "content": message.content,
        "type": message.type.value,
        "attachments": message.attachments or [],
        "created_at": message.created_at.isoformat(),
    }


def post_message(db: Session, conversation: models.Conversation, sender_id: int, content: str,
                 type_=MessageType.TEXT, attachments=None) -> models.Message:
    now = datetime.now()
    message = models.Message(
        conversation_id=conversation.id,
        sender_id=sender_id,
        content=content,
        type=type_,
        attachments=attachments or [],
        created_at=now,
    )
    db.add(message)
    conversation.updated_at = now
    for participant in conversation.participants:
        # a new message brings an archived thread back
        participant.is_archived = False
        if participant.user_id == sender_id:
            participant.last_read_at = now
    db.flush()
    db.refresh(message)

    payload = serialize_message(message)
    for participant in conversation.participants:
        if participant.user_id != sender_id:
            queue_push(db, participant.user_id, "new_message", payload)
    return message


def unread_for(db: Session, participant: models.ConversationParticipant) -> int:
    query = db.query(models.Message).filter(
        models.Message.conversation_id == participant.conversation_id,
        models.Message.sender_id != participant.user_id,
    )
    if participant.last_read_at:
        query = query.filter(models.Message.created_at > participant.last_read_at)
    return query.count()


def total_unread(db: Session, user_id: int) -> int:
    participants = db.query(models.ConversationParticipant).filter(
        models.ConversationParticipant.user_id == user_id,
    ).all()
    return sum(unread_for(db, p) for p in participants)
