from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import require_user
from ..conversations import open_conversation, post_message, total_unread, unread_for
from ..database import get_db, paginate
from ..realtime import manager

router = APIRouter(prefix="/messages", tags=["Messages"])

FILTERS = ("all", "unread", "archived", "pinned")


def get_participation(db: Session, conversation_id: int, user: models.User) -> models.ConversationParticipant:
    participant = db.query(models.ConversationParticipant).filter(
        models.ConversationParticipant.conversation_id == conversation_id,
        models.ConversationParticipant.user_id == user.id,
    ).first()
    if not participant:
        # don't leak whether the conversation exists
        raise HTTPException(status_code=404, detail="Conversation not found")
    return participant


def conversation_view(db: Session, participant: models.ConversationParticipant) -> dict:
    conversation = participant.conversation
    last = conversation.messages[-1] if conversation.messages else None
    return {
        "id": conversation.id,
        "project_id": conversation.project_id,
        "service_order_id": conversation.service_order_id,
        "participants": [p.user for p in conversation.participants],
        "last_message": last,
        "unread_count": unread_for(db, participant),
        "is_archived": participant.is_archived,
        "is_pinned": participant.is_pinned,
        "updated_at": conversation.updated_at,
    }


def mark_read(db: Session, participant: models.ConversationParticipant):
    participant.last_read_at = datetime.now()
    db.commit()
    for other in participant.conversation.participants:
        if other.user_id != participant.user_id:
            manager.publish(other.user_id, "messages_read", {
                "conversation_id": participant.conversation_id, "user_id": participant.user_id,
            })
    manager.publish(participant.user_id, "unread_count", {"messages": total_unread(db, participant.user_id)})


# GET my conversations
@router.get("/conversations", response_model=List[schemas.ConversationOut])
def list_conversations(
        filter: str = Query("all"),
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    if filter not in FILTERS:
        raise HTTPException(status_code=400, detail=f"filter must be one of {', '.join(FILTERS)}")
    query = db.query(models.ConversationParticipant).join(models.Conversation).filter(
        models.ConversationParticipant.user_id == user.id
    )
    if filter == "archived":
        query = query.filter(models.ConversationParticipant.is_archived == True)  # noqa: E712
    else:
        query = query.filter(models.ConversationParticipant.is_archived == False)  # noqa: E712
    if filter == "pinned":
        query = query.filter(models.ConversationParticipant.is_pinned == True)  # noqa: E712
    participations = query.order_by(
        models.ConversationParticipant.is_pinned.desc(), models.Conversation.updated_at.desc()
    ).all()
    views = [conversation_view(db, p) for p in participations]
    if filter == "unread":
        views = [v for v in views if v["unread_count"]]
    return views


# GET total unread messages
@router.get("/unread-count")
def unread_count(user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    return {"unread_count": total_unread(db, user.id)}


# GET one conversation
@router.get("/conversations/{conversation_id}", response_model=schemas.ConversationOut)
def read_conversation(conversation_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    return conversation_view(db, get_participation(db, conversation_id, user))


# GET messages of a conversation, marks it read
@router.get("/conversations/{conversation_id}/messages")
def list_messages(
        conversation_id: int,
        page: int = 1,
        limit: int = 50,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    participant = get_participation(db, conversation_id, user)
    query = db.query(models.Message).filter(
        models.Message.conversation_id == conversation_id
    ).order_by(models.Message.created_at.desc())
    items, pagination = paginate(query, page, limit)
    mark_read(db, participant)
    return {
        "items": [schemas.MessageOut.model_validate(m) for m in reversed(items)],
        "pagination": pagination,
    }


# POST start a direct conversation
@router.post("/conversations", response_model=schemas.ConversationOut, status_code=201)
def start_conversation(data: schemas.ConversationStart, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    if data.user_id == user.id:
        raise HTTPException(status_code=400, detail="You cannot message yourself")
    other = db.query(models.User).filter(models.User.id == data.user_id, models.User.is_active == True).first()  # noqa: E712
    if not other:
        raise HTTPException(status_code=404, detail="User not found")

    if data.project_id:
        project = db.get(models.Project, data.project_id)
        if not project or {user.id, other.id} != {project.client_id, project.freelancer_id}:
            raise HTTPException(status_code=400, detail="Only the client and the assigned freelancer can discuss this project")
    if data.service_order_id:
        order = db.get(models.ServiceOrder, data.service_order_id)
        if not order or {user.id, other.id} != {order.client_id, order.freelancer_id}:
            raise HTTPException(status_code=400, detail="Only the buyer and seller can discuss this order")

    conversation = open_conversation(
        db, [user.id, other.id], project_id=data.project_id, service_order_id=data.service_order_id,
    )
    if conversation.participant(user.id) is None:
        raise HTTPException(status_code=403, detail="Not a participant of this conversation")
    if data.message:
        post_message(db, conversation, user.id, data.message)
    db.commit()
    return conversation_view(db, conversation.participant(user.id))


# POST send a message
@router.post("/conversations/{conversation_id}/messages", response_model=schemas.MessageOut, status_code=201)
def send_message(
        conversation_id: int,
        data: schemas.MessageCreate,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    participant = get_participation(db, conversation_id, user)
    message = post_message(db, participant.conversation, user.id, data.content, data.type, data.attachments)
    db.commit()
    db.refresh(message)
    return message


def _set_flag(db, conversation_id, user, field, value):
    participant = get_participation(db, conversation_id, user)
    setattr(participant, field, value)
    db.commit()
    return {"conversation_id": conversation_id, field: value}


# POST archive / unarchive / pin / unpin
@router.post("/conversations/{conversation_id}/archive")
def archive(conversation_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    return _set_flag(db, conversation_id, user, "is_archived", True)


@router.post("/conversations/{conversation_id}/unarchive")
def unarchive(conversation_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    return _set_flag(db, conversation_id, user, "is_archived", False)


@router.post("/conversations/{conversation_id}/pin")
def pin(conversation_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    return _set_flag(db, conversation_id, user, "is_pinned", True)


@router.post("/conversations/{conversation_id}/unpin")
def unpin(conversation_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    return _set_flag(db, conversation_id, user, "is_pinned", False)
