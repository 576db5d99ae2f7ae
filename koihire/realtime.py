"""
Per-user WebSocket registry.

Request handlers run in the threadpool, so :meth:`ConnectionManager.publish`
hands the send to the event loop captured at startup instead of awaiting it.
Handlers do not publish directly: :func:`queue_push` parks the event on the
database session and it goes out only once that session commits.
"""

import asyncio
import logging
from collections import defaultdict

from fastapi import WebSocket
from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

PENDING_PUSHES = "pending_pushes"


class ConnectionManager:
    def __init__(self):
        self.connections = defaultdict(set)
        self.loop = None

    def bind(self, loop):
        self.loop = loop

    async def connect(self, user_id: int, websocket: WebSocket):
        await websocket.accept()
        # sockets are served from this loop
        self.loop = asyncio.get_running_loop()
        self.connections[user_id].add(websocket)
        logger.info("socket connected user=%s (%d open)", user_id, len(self.connections[user_id]))

    def disconnect(self, user_id: int, websocket: WebSocket):
        sockets = self.connections.get(user_id)
        if not sockets:
            return
        sockets.discard(websocket)
        if not sockets:
            del self.connections[user_id]

    def is_online(self, user_id: int) -> bool:
        return bool(self.connections.get(user_id))

    async def send(self, user_id: int, event: str, data):
        for websocket in list(self.connections.get(user_id, ())):
            try:
                await websocket.send_json({"event": event, "data": data})
            except Exception as exc:
                logger.warning("dropping socket for user=%s: %s", user_id, exc)
                self.disconnect(user_id, websocket)

    def publish(self, user_id: int, event: str, data):
        """Thread-safe fire-and-forget push to every socket of ``user_id``."""
        if not self.is_online(user_id) or self.loop is None or self.loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self.loop:
            self.loop.create_task(self.send(user_id, event, data))
        else:
            asyncio.run_coroutine_threadsafe(self.send(user_id, event, data), self.loop)


manager = ConnectionManager()


def queue_push(db: Session, user_id: int, event_name: str, data):
    """Send ``event_name`` to ``user_id`` after ``db`` commits; a rollback drops it."""
    db.info.setdefault(PENDING_PUSHES, []).append((user_id, event_name, data))


@event.listens_for(Session, "after_commit")
def _send_pending(session):
    for user_id, event_name, data in session.info.pop(PENDING_PUSHES, []):
        try:
            manager.publish(user_id, event_name, data)
        except Exception as exc:
            logger.warning("push failed user=%s event=%s: %s", user_id, event_name, exc)


@event.listens_for(Session, "after_transaction_end")
def _drop_pending(session, transaction):
    # anything still queued when the outer transaction ends was rolled back
    if transaction.parent is None:
        session.info.pop(PENDING_PUSHES, None)
