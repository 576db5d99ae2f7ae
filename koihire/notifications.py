import logging
from datetime import datetime

from sqlalchemy.orm import Session

from . import models
from .models import NotificationPriority
from .realtime import queue_push

logger = logging.getLogger(__name__)

# notification type -> (title, message template, priority)
TEMPLATES = {
    "NEW_APPLICATION": ("New application", "{actor} applied to \"{title}\"", NotificationPriority.NORMAL),
    "APPLICATION_ACCEPTED": ("Application accepted", "Your application for \"{title}\" was accepted", NotificationPriority.HIGH),
    "APPLICATION_REJECTED": ("Application not selected", "Another freelancer was chosen for \"{title}\"", NotificationPriority.NORMAL),
    "SUBMISSION_RECEIVED": ("Work submitted for review", "{actor} submitted \"{title}\" for your review", NotificationPriority.HIGH),
    "WORK_APPROVED": ("Work approved", "Your work on \"{title}\" was approved", NotificationPriority.HIGH),
    "CHANGES_REQUESTED": ("Changes requested", "Changes requested on \"{title}\": {note}", NotificationPriority.URGENT),
    "PROJECT_CANCELLED": ("Project cancelled", "\"{title}\" was cancelled", NotificationPriority.NORMAL),
    "PROJECT_DISPUTED": ("Dispute opened", "A dispute was opened on \"{title}\"", NotificationPriority.URGENT),
    "PROJECT_UPDATED": ("Project updated", "The {field} of \"{title}\" was updated", NotificationPriority.NORMAL),
    "ESCROW_FUNDED": ("Escrow funded", "Payment for \"{title}\" is held in escrow", NotificationPriority.HIGH),
    "PAYMENT_RELEASED": ("Payment released", "${amount:.2f} released for \"{title}\"", NotificationPriority.HIGH),
    "PAYMENT_REFUNDED": ("Payment refunded", "${amount:.2f} refunded for \"{title}\"", NotificationPriority.HIGH),
    "PAYOUT_UPDATED": ("Payout update", "Your payout of ${amount:.2f} is now {status}", NotificationPriority.NORMAL),
    "SERVICE_ORDER_RECEIVED": ("New order", "{actor} ordered \"{title}\"", NotificationPriority.HIGH),
    "SERVICE_ORDER_ACCEPTED": ("Order accepted", "Your order for \"{title}\" was accepted", NotificationPriority.HIGH),
    "SERVICE_ORDER_STARTED": ("Work started", "Work started on \"{title}\"", NotificationPriority.NORMAL),
    "SERVICE_ORDER_DELIVERED": ("Order delivered", "\"{title}\" was delivered", NotificationPriority.HIGH),
    "SERVICE_ORDER_APPROVED": ("Order approved", "Your delivery for \"{title}\" was approved", NotificationPriority.HIGH),
    "SERVICE_ORDER_REVISION_REQUESTED": ("Revision requested", "A revision was requested on \"{title}\"", NotificationPriority.URGENT),
    "SERVICE_ORDER_CANCELLED": ("Order cancelled", "The order for \"{title}\" was cancelled", NotificationPriority.NORMAL),
    "SERVICE_ORDER_DISPUTED": ("Dispute opened", "A dispute was opened on \"{title}\"", NotificationPriority.URGENT),
    "SERVICE_REVIEW_RECEIVED": ("New review", "\"{title}\" received a {rating}-star review", NotificationPriority.NORMAL),
    "NEW_REVIEW": ("New review", "{actor} left you a {rating}-star review", NotificationPriority.NORMAL),
    "ACCOUNT_STATUS": ("Account update", "Your account was {status}", NotificationPriority.HIGH),
}


def serialize(notification: models.Notification) -> dict:
    return {
        "id": notification.id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "priority": notification.priority.value,
        "data": notification.data or {},
        "is_read": notification.is_read,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


def unread_count(db: Session, user_id: int) -> int:
    return db.query(models.Notification).filter(
        models.Notification.user_id == user_id, models.Notification.is_read == False  # noqa: E712
    ).count()


def notify(db: Session, user_id: int, type_: str, data: dict = None, **fields) -> models.Notification:
    """
    Store a notification and push it to the user's open sockets on commit.

    ``fields`` fill the message template (title, actor, amount, ...).
    The row is flushed, not committed; the caller's commit persists it.
    """
    title, template, priority = TEMPLATES[type_]
    notification = models.Notification(
        user_id=user_id,
        type=type_,
        title=title,
        message=template.format(**fields),
        priority=priority,
        data=data or {},
        created_at=datetime.now(),
    )
    db.add(notification)
    db.flush()
    queue_push(db, user_id, "notification", serialize(notification))
    return notification
