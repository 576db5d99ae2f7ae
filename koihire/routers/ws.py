import logging
from datetime import datetime

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from .. import models
from ..conversations import total_unread
from ..database import SessionLocal
from ..notifications import unread_count
from ..realtime import manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Realtime"])

# A socket holds no database connection while idle. Each event opens its own
# session in the threadpool and closes it before the reply is sent.


def _counts(db, user_id):
    return {"notifications": unread_count(db, user_id), "messages": total_unread(db, user_id)}


def _participant(db, conversation_id, user_id):
    return db.query(models.ConversationParticipant).filter(
        models.ConversationParticipant.conversation_id == conversation_id,
        models.ConversationParticipant.user_id == user_id,
    ).first()


def _peers(participant):
    return [p.user_id for p in participant.conversation.participants if p.user_id != participant.user_id]


def active_user_id(user_id):
    with SessionLocal() as db:
        user = db.get(models.User, user_id)
        return user.id if user and user.is_active else None


def get_unread_counts(user_id, data=None):
    with SessionLocal() as db:
        return {"counts": _counts(db, user_id)}


def mark_notification_read(user_id, data):
    with SessionLocal() as db:
        notification = db.query(models.Notification).filter(
            models.Notification.id == data.get("id"), models.Notification.user_id == user_id
        ).first()
        if not notification:
            return {"error": "Notification not found"}
        notification.is_read = True
        notification.read_at = datetime.now()
        db.commit()
        return {"counts": _counts(db, user_id)}


def mark_all_notifications_read(user_id, data):
    with SessionLocal() as db:
        db.query(models.Notification).filter(
            models.Notification.user_id == user_id, models.Notification.is_read == False  # noqa: E712
        ).update({"is_read": True, "read_at": datetime.now()}, synchronize_session=False)
        db.commit()
        return {"counts": _counts(db, user_id)}


def typing_peers(user_id, data):
    with SessionLocal() as db:
        participant = _participant(db, data.get("conversation_id"), user_id)
        if not participant:
            return {"error": "Conversation not found"}
        return {"conversation_id": participant.conversation_id, "peers": _peers(participant)}


def mark_messages_read(user_id, data):
    with SessionLocal() as db:
        participant = _participant(db, data.get("conversation_id"), user_id)
        if not participant:
            return {"error": "Conversation not found"}
        participant.last_read_at = datetime.now()
        db.commit()
        return {
            "conversation_id": participant.conversation_id,
            "peers": _peers(participant),
            "counts": _counts(db, user_id),
        }


DB_EVENTS = {
    "get_unread_count": get_unread_counts,
    "mark_notification_read": mark_notification_read,
    "mark_all_notifications_read": mark_all_notifications_read,
    "typing_start": typing_peers,
    "typing_stop": typing_peers,
    "mark_messages_read": mark_messages_read,
}


async def handle_event(websocket: WebSocket, user_id: int, event: str, data: dict):
    if event == "ping":
        await websocket.send_json({"event": "pong", "data": {}})
        return

    query = DB_EVENTS.get(event)
    if query is None:
        await websocket.send_json({"event": "error", "data": {"message": f"Unknown event {event!r}"}})
        return

    result = await run_in_threadpool(query, user_id, data)
    if "error" in result:
        await websocket.send_json({"event": "error", "data": {"message": result["error"]}})
        return

    if event in ("typing_start", "typing_stop"):
        for peer in result["peers"]:
            await manager.send(peer, "user_typing", {
                "conversation_id": result["conversation_id"],
                "user_id": user_id,
                "is_typing": event == "typing_start",
            })
    elif event == "mark_messages_read":
        for peer in result["peers"]:
            await manager.send(peer, "messages_read", {"conversation_id": result["conversation_id"], "user_id": user_id})

    if "counts" in result:
        await websocket.send_json({"event": "unread_count", "data": result["counts"]})


# WS live notifications and messaging
@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    session_user = websocket.session.get("user")
    user_id = await run_in_threadpool(active_user_id, session_user["id"]) if session_user else None
    if not user_id:
        await websocket.close(code=4401)
        return

    await manager.connect(user_id, websocket)
    try:
        hello = await run_in_threadpool(get_unread_counts, user_id)
        await websocket.send_json({"event": "unread_count", "data": hello["counts"]})
        while True:
            message = await websocket.receive_json()
            if not isinstance(message, dict):
                await websocket.send_json({"event": "error", "data": {"message": "Expected a JSON object"}})
                continue
            data = message.get("data")
            await handle_event(websocket, user_id, message.get("event"), data if isinstance(data, dict) else {})
    except WebSocketDisconnect:
        logger.info("socket closed user=%s", user_id)
    finally:
        manager.disconnect(user_id, websocket)
