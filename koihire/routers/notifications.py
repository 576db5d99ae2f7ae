from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import require_user
from ..database import get_db, paginate
from ..notifications import unread_count
from ..realtime import manager

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def _owned(db, notification_id, user):
    notification = db.query(models.Notification).filter(
        models.Notification.id == notification_id, models.Notification.user_id == user.id
    ).first()
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification


def _push_count(db, user_id):
    manager.publish(user_id, "unread_count", {"notifications": unread_count(db, user_id)})


# GET my notifications
@router.get("", response_model=schemas.NotificationPage)
def list_notifications(
        unread_only: bool = False,
        page: int = 1,
        limit: int = 20,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    query = db.query(models.Notification).filter(models.Notification.user_id == user.id)
    if unread_only:
        query = query.filter(models.Notification.is_read == False)  # noqa: E712
    items, pagination = paginate(query.order_by(models.Notification.created_at.desc()), page, limit)
    return {"items": items, "pagination": pagination, "unread_count": unread_count(db, user.id)}


# GET unread count
@router.get("/unread-count")
def get_unread_count(user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    return {"unread_count": unread_count(db, user.id)}


# POST mark all as read
@router.post("/read-all")
def mark_all_read(user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    updated = db.query(models.Notification).filter(
        models.Notification.user_id == user.id, models.Notification.is_read == False  # noqa: E712
    ).update({"is_read": True, "read_at": datetime.now()}, synchronize_session=False)
    db.commit()
    _push_count(db, user.id)
    return {"updated": updated}


# POST mark one as read
@router.post("/{notification_id}/read", response_model=schemas.NotificationOut)
def mark_read(notification_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    notification = _owned(db, notification_id, user)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.now()
        db.commit()
        db.refresh(notification)
        _push_count(db, user.id)
    return notification


# DELETE one notification
@router.delete("/{notification_id}")
def delete_notification(notification_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    notification = _owned(db, notification_id, user)
    db.delete(notification)
    db.commit()
    return {"message": "Notification deleted"}
