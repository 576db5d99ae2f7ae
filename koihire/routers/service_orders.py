import logging
import random
import time
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import require_client, require_user
from ..conversations import open_conversation
from ..database import get_db, paginate
from ..lifecycle import advance
from ..models import EscrowStatus, OrderStatus, PaymentStatus, Role
from ..notifications import notify
from ..payments import open_escrow, release_escrow, settle_on_cancel
from ..pricing import calculate_pricing

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/service-orders", tags=["Service Orders"])


def new_order_number():
    return f"SRV-{int(time.time() * 1000)}-{random.randint(0, 999):03d}"


def get_order(db: Session, order_id: int, user: models.User) -> models.ServiceOrder:
    order = db.query(models.ServiceOrder).filter(models.ServiceOrder.id == order_id).first()
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if not order.is_party(user.id) and user.role != Role.ADMIN:
        raise HTTPException(status_code=403, detail="Not a participant of this order")
    return order


def _require_seller(order, user):
    if order.freelancer_id != user.id:
        raise HTTPException(status_code=403, detail="Only the seller can do this")


def _require_buyer(order, user):
    if order.client_id != user.id:
        raise HTTPException(status_code=403, detail="Only the buyer can do this")


# GET my orders
@router.get("", response_model=schemas.OrderPage)
def my_orders(
        role: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        page: int = 1,
        limit: int = 20,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    # freelancers see their sales unless they ask for purchases
    side = role or ("freelancer" if user.role == Role.FREELANCER else "client")
    if side not in ("client", "freelancer"):
        raise HTTPException(status_code=400, detail="role must be client or freelancer")
    query = db.query(models.ServiceOrder)
    if side == "freelancer":
        query = query.filter(models.ServiceOrder.freelancer_id == user.id)
    else:
        query = query.filter(models.ServiceOrder.client_id == user.id)
    if status:
        query = query.filter(models.ServiceOrder.status == status)
    items, pagination = paginate(query.order_by(models.ServiceOrder.created_at.desc()), page, limit)
    return {"items": items, "pagination": pagination}


# GET one order
@router.get("/{order_id}", response_model=schemas.OrderOut)
def read_order(order_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    return get_order(db, order_id, user)


# POST place an order (client)
@router.post("", response_model=schemas.OrderOut, status_code=201)
def place_order(data: schemas.OrderCreate, user: models.User = Depends(require_client), db: Session = Depends(get_db)):
    service = db.query(models.Service).filter(
        models.Service.id == data.service_id, models.Service.is_active == True  # noqa: E712
    ).first()
    if not service:
        raise HTTPException(status_code=404, detail="Service not found or inactive")
    if service.freelancer_id == user.id:
        raise HTTPException(status_code=400, detail="You cannot order your own service")
    package = db.query(models.ServicePackage).filter(
        models.ServicePackage.id == data.package_id, models.ServicePackage.service_id == service.id
    ).first()
    if not package:
        raise HTTPException(status_code=400, detail="Package does not belong to this service")

    pricing = calculate_pricing(package.price)
    order = models.ServiceOrder(
        order_number=new_order_number(),
        service_id=service.id,
        package_id=package.id,
        client_id=user.id,
        freelancer_id=service.freelancer_id,
        package_price=pricing.price,
        buyer_fee=pricing.buyer_fee,
        seller_commission=pricing.seller_commission,
        total_amount=pricing.total_charged,
        requirements=data.requirements,
        delivery_date=datetime.now() + timedelta(days=package.delivery_days),
    )
    db.add(order)
    db.flush()
    open_escrow(db, pricing.total_charged, order=order)
    open_conversation(db, [user.id, service.freelancer_id], service_order_id=order.id)
    notify(
        db, service.freelancer_id, "SERVICE_ORDER_RECEIVED", {"order_id": order.id},
        actor=user.full_name, title=service.title,
    )
    db.commit()
    db.refresh(order)
    logger.info("order %s placed by user=%s total=%.2f", order.order_number, user.id, order.total_amount)
    return order


# POST accept a paid order (seller)
@router.post("/{order_id}/accept", response_model=schemas.OrderOut)
def accept_order(order_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    order = get_order(db, order_id, user)
    _require_seller(order, user)
    if order.payment_status != PaymentStatus.PAID:
        raise HTTPException(status_code=400, detail="Order has not been paid yet")
    advance(order, OrderStatus.ACCEPTED)
    notify(db, order.client_id, "SERVICE_ORDER_ACCEPTED", {"order_id": order.id}, title=order.service.title)
    db.commit()
    db.refresh(order)
    return order


# POST start work (seller)
@router.post("/{order_id}/start", response_model=schemas.OrderOut)
def start_order(order_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    order = get_order(db, order_id, user)
    _require_seller(order, user)
    advance(order, OrderStatus.IN_PROGRESS)
    notify(db, order.client_id, "SERVICE_ORDER_STARTED", {"order_id": order.id}, title=order.service.title)
    db.commit()
    db.refresh(order)
    return order


# POST deliver work (seller)
@router.post("/{order_id}/deliver", response_model=schemas.OrderOut)
def deliver_order(
        order_id: int,
        data: schemas.DeliverIn,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    order = get_order(db, order_id, user)
    _require_seller(order, user)
    advance(order, OrderStatus.DELIVERED)
    order.delivered_at = datetime.now()
    order.deliverables.append(models.OrderDeliverable(
        title=data.title, description=data.description, files=data.files, submitted_at=order.delivered_at,
    ))
    notify(db, order.client_id, "SERVICE_ORDER_DELIVERED", {"order_id": order.id}, title=order.service.title)
    db.commit()
    db.refresh(order)
    return order


# POST approve delivery and release payment (buyer)
@router.post("/{order_id}/approve", response_model=schemas.OrderOut)
def approve_order(order_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    order = get_order(db, order_id, user)
    _require_buyer(order, user)
    if order.status != OrderStatus.DELIVERED:
        raise HTTPException(status_code=400, detail="Order has not been delivered")
    if order.escrow is None or order.escrow.status != EscrowStatus.FUNDED:
        raise HTTPException(status_code=400, detail="Escrow must be funded before the order can be approved")

    advance(order, OrderStatus.COMPLETED)
    order.completed_at = datetime.now()
    order.service.orders_completed = (order.service.orders_completed or 0) + 1
    release_escrow(db, order.escrow)
    notify(db, order.freelancer_id, "SERVICE_ORDER_APPROVED", {"order_id": order.id}, title=order.service.title)
    db.commit()
    db.refresh(order)
    return order


# POST request a revision (buyer)
@router.post("/{order_id}/revision", response_model=schemas.OrderOut)
def request_revision(
        order_id: int,
        data: schemas.RevisionIn,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    order = get_order(db, order_id, user)
    _require_buyer(order, user)
    if order.status != OrderStatus.DELIVERED:
        raise HTTPException(status_code=400, detail="Only delivered orders can be sent back for revision")
    if order.revisions_used >= order.package.revisions:
        raise HTTPException(status_code=400, detail="No revisions left on this package")
    advance(order, OrderStatus.REVISION_REQUESTED)
    order.revisions_used += 1
    if order.deliverables:
        order.deliverables[0].revision_note = data.note
    notify(db, order.freelancer_id, "SERVICE_ORDER_REVISION_REQUESTED", {"order_id": order.id}, title=order.service.title)
    db.commit()
    db.refresh(order)
    return order


# POST cancel (either party, before work starts)
@router.post("/{order_id}/cancel", response_model=schemas.OrderOut)
def cancel_order(
        order_id: int,
        data: schemas.ReasonIn,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    order = get_order(db, order_id, user)
    if not order.is_party(user.id):
        raise HTTPException(status_code=403, detail="Not a participant of this order")
    if order.status not in (OrderStatus.PENDING, OrderStatus.ACCEPTED):
        raise HTTPException(status_code=400, detail="Orders can only be cancelled before work starts")
    advance(order, OrderStatus.CANCELLED)
    order.cancel_reason = data.reason
    settle_on_cancel(db, order.escrow, data.reason)
    other = order.freelancer_id if user.id == order.client_id else order.client_id
    notify(db, other, "SERVICE_ORDER_CANCELLED", {"order_id": order.id}, title=order.service.title)
    db.commit()
    db.refresh(order)
    return order


# POST open a dispute (either party)
@router.post("/{order_id}/dispute", response_model=schemas.OrderOut)
def dispute_order(
        order_id: int,
        data: schemas.DisputeIn,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    order = get_order(db, order_id, user)
    if not order.is_party(user.id):
        raise HTTPException(status_code=403, detail="Not a participant of this order")
    advance(order, OrderStatus.DISPUTED)
    order.dispute_reason = data.reason
    other = order.freelancer_id if user.id == order.client_id else order.client_id
    notify(db, other, "SERVICE_ORDER_DISPUTED", {"order_id": order.id}, title=order.service.title)
    db.commit()
    db.refresh(order)
    logger.info("order %s disputed by user=%s", order.order_number, user.id)
    return order


# POST review a completed order (buyer)
@router.post("/{order_id}/review", response_model=schemas.ServiceReviewOut, status_code=201)
def review_order(
        order_id: int,
        data: schemas.ServiceReviewCreate,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    order = get_order(db, order_id, user)
    _require_buyer(order, user)
    if order.status != OrderStatus.COMPLETED:
        raise HTTPException(status_code=400, detail="Only completed orders can be reviewed")
    if order.review is not None:
        raise HTTPException(status_code=409, detail="This order has already been reviewed")

    review = models.ServiceReview(
        service_id=order.service_id,
        order_id=order.id,
        client_id=user.id,
        freelancer_id=order.freelancer_id,
        **data.model_dump(),
    )
    db.add(review)
    db.flush()

    service = order.service
    average, count = db.query(
        func.avg(models.ServiceReview.rating), func.count(models.ServiceReview.id)
    ).filter(models.ServiceReview.service_id == service.id).one()
    service.rating = round(float(average or 0), 2)
    service.review_count = count
    notify(
        db, order.freelancer_id, "SERVICE_REVIEW_RECEIVED", {"order_id": order.id, "review_id": review.id},
        title=service.title, rating=data.rating,
    )
    db.commit()
    db.refresh(review)
    return review
